#!/usr/bin/env python3
"""
Conversational form demo

Creates a feedback form, fills it in through a conversation (including the
AI-assisted field), then shows the extracted problems and problem groups.
Needs a running server with a configured model.
"""

import json
import sys
import time
from typing import Any, Dict, List

import requests

# API base URL
BASE_URL = "http://localhost:8080"

DEMO_USER_ID = f"demo_user_{int(time.time())}"

SAMPLE_FORM = {
    "title": "New hire onboarding",
    "description": "Help us improve the first week",
    "is_published": True,
    "fields": [
        {"id": "name", "type": "text", "label": "What is your name?", "required": True},
        {"id": "team", "type": "select", "label": "Which team did you join?",
         "options": ["Engineering", "Sales", "Support"], "required": True},
        {"id": "had_issues", "type": "radio", "label": "Did anything go wrong?", "options": ["yes", "no"]},
        {"id": "issues", "type": "textarea", "label": "Tell us what went wrong", "aiEnabled": True,
         "conditional": {"showIf": {"fieldId": "had_issues", "operator": "equals", "value": "yes"}}},
        {"id": "rating", "type": "rating", "label": "How would you rate your first week?",
         "validation": [{"type": "min", "value": 1, "message": "Pick 1 to 5"},
                        {"type": "max", "value": 5, "message": "Pick 1 to 5"}]},
    ],
}

SAMPLE_ANSWERS = {
    "name": "Ann",
    "team": "Support",
    "had_issues": "yes",
    "rating": 3,
}

SAMPLE_MESSAGES = [
    "My laptop arrived on day three and the paperwork was confusing",
    "Nobody told me which forms to sign first, and the office tour was skipped",
    "That's everything, thanks",
]


class ConversationDemo:
    """Walks through the IntelliForm API end to end"""

    def __init__(self, base_url: str = BASE_URL, user_id: str = DEMO_USER_ID):
        self.base_url = base_url
        self.session = requests.Session()
        self.owner_headers = {"X-User-Id": user_id}

    def create_form(self) -> str:
        print(f"🔄 Creating form '{SAMPLE_FORM['title']}'")
        response = self.session.post(f"{self.base_url}/forms", json=SAMPLE_FORM, headers=self.owner_headers)
        response.raise_for_status()
        form_id = response.json()["form_id"]
        print(f"✅ Form created: {form_id}")
        return form_id

    def start_conversation(self, form_id: str) -> Dict[str, Any]:
        response = self.session.post(f"{self.base_url}/public/forms/{form_id}/conversations")
        response.raise_for_status()
        view = response.json()
        print(f"💬 {view['log'][0]['content']}")
        return view

    def answer(self, session_id: str, field: Dict[str, Any]) -> Dict[str, Any]:
        value = SAMPLE_ANSWERS[field["id"]]
        print(f"   Q: {field['label']}")
        print(f"   A: {value}")
        response = self.session.post(
            f"{self.base_url}/public/conversations/{session_id}/answer",
            json={"field_id": field["id"], "value": value}
        )
        if response.status_code == 422:
            print(f"   ⚠️ {response.json()['message']}")
        response.raise_for_status()
        return response.json()

    def chat(self, session_id: str, field: Dict[str, Any]) -> Dict[str, Any]:
        print(f"   🤖 {field['label']}")
        view = None
        for message in SAMPLE_MESSAGES:
            print(f"   👤 {message}")
            response = self.session.post(
                f"{self.base_url}/public/conversations/{session_id}/messages",
                json={"message": message}
            )
            if response.status_code in (502, 503):
                print(f"   ❌ AI unavailable: {response.json()['message']}")
            response.raise_for_status()
            view = response.json()

            if view["mode"] == "STANDARD":
                print(f"   📝 Summary: {view['answers'][field['id']]}")
                return view
            print(f"   🤖 {view['log'][-1]['content']}")

        # Still chatting after the scripted messages
        return view

    def fill_in(self, view: Dict[str, Any]) -> str:
        session_id = view["session_id"]
        while view["status"] != "SUBMITTED":
            field = view["active_field"]
            if field is None:
                view = self.session.post(f"{self.base_url}/public/conversations/{session_id}/finalize").json()
                break
            if field.get("aiEnabled"):
                view = self.chat(session_id, field)
            else:
                view = self.answer(session_id, field)

        print(f"✅ Submitted as {view['submission_id']}")
        return view["submission_id"]

    def show_submission(self, submission_id: str, attempts: int = 10) -> Dict[str, Any]:
        print("🔄 Waiting for problem extraction")
        for _ in range(attempts):
            response = self.session.get(f"{self.base_url}/submissions/{submission_id}", headers=self.owner_headers)
            response.raise_for_status()
            submission = response.json()
            if submission["extraction_status"] != "PENDING":
                break
            time.sleep(1)

        print(f"   Extraction: {submission['extraction_status']}")
        for problem in submission["problems"]:
            print(f"   • {problem['problem']}")
            for solution in problem["solutions"]:
                print(f"       → {solution}")
        return submission

    def show_problem_groups(self) -> List[Dict[str, Any]]:
        print("🔄 Ranking problems across submissions")
        response = self.session.get(f"{self.base_url}/ai/problem-groups", headers=self.owner_headers)
        response.raise_for_status()
        groups = response.json()
        for group in groups:
            print(f"   [{group['count']}] {group['problem']} ({', '.join(group['form_names'])})")
        return groups

    def resolve_top_group(self, groups: List[Dict[str, Any]]) -> Dict[str, Any]:
        if not groups:
            print("ℹ️ No problem groups to resolve")
            return {}
        group = groups[0]
        response = self.session.post(
            f"{self.base_url}/ai/problem-groups/resolve",
            headers=self.owner_headers,
            json={
                "problem": group["problem"],
                "submission_ids": group["ids"],
                "resolution_comment": "Addressed in the onboarding checklist"
            }
        )
        response.raise_for_status()
        result = response.json()
        print(f"✅ Resolved '{group['problem']}' in {result['updated_count']}/{result['requested']} submission(s)")
        return result

    def run_complete_demo(self) -> Dict[str, Any]:
        print("🚀 IntelliForm conversation demo")
        print("=" * 60)

        form_id = self.create_form()
        view = self.start_conversation(form_id)
        submission_id = self.fill_in(view)
        submission = self.show_submission(submission_id)
        groups = self.show_problem_groups()
        resolution = self.resolve_top_group(groups)

        print("\n" + "=" * 60)
        print("🎉 Demo finished")
        return {
            "form_id": form_id,
            "submission": submission,
            "problem_groups": groups,
            "resolution": resolution
        }


def main():
    print(f"Make sure the API server is running at {BASE_URL}")

    try:
        response = requests.get(f"{BASE_URL}/health")
        response.raise_for_status()
        print("✅ API server is up")
    except requests.exceptions.RequestException:
        print("❌ Cannot reach the API server")
        return 1

    try:
        result = ConversationDemo().run_complete_demo()
    except requests.exceptions.RequestException as e:
        print(f"❌ Demo failed: {e}")
        return 1

    with open("demo_result.json", "w", encoding="utf-8") as f:
        json.dump(result, f, ensure_ascii=False, indent=2)
    print("📄 Demo result saved to demo_result.json")
    return 0


if __name__ == "__main__":
    sys.exit(main())
