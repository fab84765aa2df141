import unittest

from messconnect.entities import ComplaintEntity
from messconnect.tests.api_testing_utils import ApiTestCase


class FeedbackApiTests(ApiTestCase):
    def test_listing_returns_every_complaint_unchanged(self):
        headers = self.approved_student()
        submitted = []
        for i in range(5):
            payload = {"text": f"Complaint number {i} about the food"}
            if i == 1:
                payload["text"] = "  Rice was undercooked today\n"
            if i == 3:
                payload["text"] = "Dal was cold.\nRoti was burnt.\n\n"
            if i % 2 == 0:
                payload["imageUrl"] = f"https://images.example.com/{i}.jpg"
            response = self.client.post("/api/complaints", json=payload, headers=headers)
            self.assertEqual(response.status_code, 200, response.text)
            submitted.append((response.json()["data"]["id"], payload))

        response = self.client.get("/api/complaints/all", headers=self.manager_headers())
        self.assertEqual(response.status_code, 200)
        complaints = response.json()["data"]["complaints"]
        self.assertEqual(len(complaints), 5)

        by_id = {item["id"]: item for item in complaints}
        for complaint_id, payload in submitted:
            item = by_id[complaint_id]
            self.assertEqual(item["text"], payload["text"])
            self.assertEqual(item["imageUrl"], payload.get("imageUrl"))
            self.assertEqual(item["studentId"], "asha@example.com")
            self.assertEqual(item["studentName"], "Asha Rao")
            self.assertIsNone(item["reply"])

    def test_complaint_text_too_short_is_rejected(self):
        headers = self.approved_student()
        response = self.client.post("/api/complaints", json={"text": "bad"}, headers=headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Text must be at least 10 characters long.")

    def test_multipart_complaint_stores_image(self):
        headers = self.approved_student()
        response = self.client.post(
            "/api/complaints",
            data={"text": "The dal was cold again today"},
            files={"image": ("plate photo.png", b"\x89PNG fake bytes", "image/png")},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        complaint = response.json()["data"]
        self.assertEqual(
            complaint["imagePath"], f"complaints/{complaint['id']}/plate_photo.png"
        )
        self.assertEqual(
            self.storage.stored_objects[complaint["imagePath"]], b"\x89PNG fake bytes"
        )
        self.assertTrue(complaint["imageUrl"].startswith(self.storage.base_url))

    def test_multipart_rejects_non_image(self):
        headers = self.approved_student()
        response = self.client.post(
            "/api/complaints",
            data={"text": "The dal was cold again today"},
            files={"image": ("notes.txt", b"hello", "text/plain")},
            headers=headers,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(ComplaintEntity.index(self.store).count(), 0)

    def test_only_students_submit_and_only_staff_list(self):
        manager = self.manager_headers()
        response = self.client.post(
            "/api/complaints", json={"text": "Managers cannot complain here"}, headers=manager
        )
        self.assertEqual(response.status_code, 401)

        student = self.approved_student()
        self.assertEqual(
            self.client.get("/api/complaints/all", headers=student).status_code, 401
        )
        self.assertEqual(
            self.client.get("/api/complaints/all", headers=self.admin_headers()).status_code,
            200,
        )

    def test_manager_reply_is_visible_to_student(self):
        student = self.approved_student()
        created = self.client.post(
            "/api/complaints", json={"text": "Too much salt in the curry"}, headers=student
        ).json()["data"]

        response = self.client.post(
            f"/api/complaints/{created['id']}/reply",
            json={"reply": "We will fix it."},
            headers=self.manager_headers(),
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["reply"], "We will fix it.")

        mine = self.client.get("/api/complaints/mine", headers=student).json()["data"]
        self.assertEqual(mine["complaints"][0]["reply"], "We will fix it.")
        self.assertIsNotNone(mine["complaints"][0]["repliedAt"])

    def test_reply_to_missing_complaint_is_not_found(self):
        response = self.client.post(
            "/api/complaints/nope/reply",
            json={"reply": "Hello"},
            headers=self.manager_headers(),
        )
        self.assertEqual(response.status_code, 404)

    def test_suggestions_flow(self):
        first = self.approved_student()
        second = self.approved_student(email="ravi@example.com", name="Ravi Kumar")
        self.client.post(
            "/api/suggestions", json={"text": "Add paneer on Fridays please"}, headers=first
        )
        created = self.client.post(
            "/api/suggestions", json={"text": "Serve breakfast a bit later"}, headers=second
        ).json()["data"]

        mine = self.client.get("/api/suggestions/mine", headers=second).json()["data"]
        self.assertEqual([item["id"] for item in mine["suggestions"]], [created["id"]])

        manager = self.manager_headers()
        all_items = self.client.get("/api/suggestions/all", headers=manager).json()["data"]
        self.assertEqual(len(all_items["suggestions"]), 2)

        reply = self.client.post(
            f"/api/suggestions/{created['id']}/reply",
            json={"reply": "Good idea"},
            headers=manager,
        )
        self.assertEqual(reply.json()["data"]["reply"], "Good idea")
        self.assertEqual(self.mailer.outbox[-1]["to"], "ravi@example.com")


if __name__ == "__main__":
    unittest.main()
