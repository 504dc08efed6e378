import os

os.environ.setdefault("LOG_TO_FILE", "false")

import pytest
from fastapi.testclient import TestClient

from intelliform.database.database_config import DatabaseConfig
from intelliform.database.form_repositories import FormRepository, SubmissionRepository
from intelliform.main import create_app
from intelliform.model.form_schemas import ChatReply
from intelliform.utils.settings import AppSettings


class ScriptedAI:
    """AI capability double that plays back queued results.

    Each queue holds return values or exceptions (raised when reached).
    Extraction and ranking default to "nothing found" once their queue is empty.
    """

    def __init__(self):
        self.chat_replies = []
        self.summaries = []
        self.extractions = []
        self.rankings = []
        self.chat_calls = []
        self.summarize_calls = []
        self.extract_calls = []
        self.rank_calls = []

    @staticmethod
    def _next(queue, default=None):
        if not queue:
            if default is None:
                raise AssertionError("Unexpected AI call")
            return default
        result = queue.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def reply(self, content, finished=False):
        self.chat_replies.append(ChatReply(content=content, conversation_finished=finished))

    def chat(self, message, history=None):
        self.chat_calls.append((message, list(history or [])))
        return self._next(self.chat_replies)

    def summarize(self, transcript):
        self.summarize_calls.append(transcript)
        return self._next(self.summaries)

    def extract_problems(self, submission_text):
        self.extract_calls.append(submission_text)
        return self._next(self.extractions, default=[])

    def rank_problems(self, pairs, violations=None):
        self.rank_calls.append((list(pairs), violations))
        return self._next(self.rankings, default=[])


@pytest.fixture
def scripted_ai():
    return ScriptedAI()


@pytest.fixture
def db_config(tmp_path):
    config = DatabaseConfig(f"sqlite:///{tmp_path / 'intelliform_test.db'}")
    config.create_tables()
    yield config
    config.dispose()


@pytest.fixture
def db_session(db_config):
    session = db_config.SessionLocal()
    yield session
    session.close()


@pytest.fixture
def seed(db_session):
    """Helpers that write forms, submissions and problems straight to the store"""

    class Seeder:
        def form(self, user_id="owner-1", title="Onboarding feedback", fields=None, is_published=True):
            form = FormRepository(db_session).create_form(
                user_id=user_id,
                title=title,
                fields=fields or [{"id": "feedback", "type": "textarea", "label": "Feedback"}],
                is_published=is_published
            )
            db_session.commit()
            return form

        def submission(self, form, data=None, problem_texts=()):
            repo = SubmissionRepository(db_session)
            submission = repo.create_submission(form.form_id, data or {"feedback": "text"})
            if problem_texts:
                repo.replace_problems(submission.submission_id, [(text, ["Do something"]) for text in problem_texts])
            db_session.commit()
            return submission

    return Seeder()


@pytest.fixture
def app(db_config, scripted_ai):
    settings = AppSettings(database_url=str(db_config.engine.url), log_to_file=False)
    return create_app(settings, ai_service=scripted_ai, db_config=db_config)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
