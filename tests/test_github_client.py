import base64
import unittest
from datetime import datetime, timezone

from nacl import encoding, public

from cms_starter.github import GitHubAPIError, GitHubClient, WorkflowRun, encrypt_secret
from cms_starter.orchestrator import ReadinessTimeoutError


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None) -> None:
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = ""

    def json(self):
        return self._payload


class RoutedSession:
    """Answers by (method, path); a list of responses is consumed in order."""

    def __init__(self, routes) -> None:
        self.headers = {}
        self.routes = {key: list(value) if isinstance(value, list) else value for key, value in routes.items()}
        self.calls = []

    def request(self, method, url, timeout=None, **kwargs):
        path = url.replace("https://api.github.com", "")
        self.calls.append((method, path, kwargs))
        answer = self.routes[(method, path)]
        if isinstance(answer, list):
            return answer.pop(0) if len(answer) > 1 else answer[0]
        return answer


_USER = FakeResponse(200, {"login": "octo"})


class GitHubClientTests(unittest.TestCase):
    def test_create_repo(self) -> None:
        session = RoutedSession({
            ("GET", "/user"): _USER,
            ("POST", "/user/repos"): FakeResponse(201, {
                "name": "my-site",
                "html_url": "https://github.com/octo/my-site",
                "clone_url": "https://github.com/octo/my-site.git",
            }),
        })
        client = GitHubClient("ghp", session=session, use_gh_cli=False)

        repo = client.create_repo("my-site")

        self.assertEqual(repo.full_name, "octo/my-site")
        self.assertEqual(repo.html_url, "https://github.com/octo/my-site")
        body = session.calls[1][2]["json"]
        self.assertTrue(body["private"])
        self.assertFalse(body["auto_init"])
        self.assertEqual(session.headers["Authorization"], "Bearer ghp")

    def test_create_repo_reports_creation_before_reading_body(self) -> None:
        session = RoutedSession({
            ("GET", "/user"): _USER,
            ("POST", "/user/repos"): FakeResponse(201, {"name": "my-site"}),
        })
        created = []

        with self.assertRaises(KeyError):
            GitHubClient("ghp", session=session, use_gh_cli=False).create_repo(
                "my-site", on_created=lambda owner, name: created.append((owner, name))
            )

        self.assertEqual(created, [("octo", "my-site")])

    def test_create_repo_conflict(self) -> None:
        session = RoutedSession({
            ("GET", "/user"): _USER,
            ("POST", "/user/repos"): FakeResponse(422, {"message": "name already exists on this account"}),
        })
        with self.assertRaises(GitHubAPIError) as ctx:
            GitHubClient("ghp", session=session).create_repo("my-site")
        self.assertEqual(ctx.exception.status_code, 422)
        self.assertIn("already exists", str(ctx.exception))

    def test_delete_repo_not_found(self) -> None:
        session = RoutedSession({("DELETE", "/repos/octo/gone"): FakeResponse(404, {"message": "Not Found"})})
        with self.assertRaises(GitHubAPIError) as ctx:
            GitHubClient("ghp", session=session).delete_repo("octo", "gone")
        self.assertTrue(ctx.exception.not_found)

    def test_set_secrets_via_api(self) -> None:
        private_key = public.PrivateKey.generate()
        key_b64 = private_key.public_key.encode(encoding.Base64Encoder()).decode("utf-8")
        session = RoutedSession({
            ("GET", "/repos/octo/site/actions/secrets/public-key"): FakeResponse(200, {"key": key_b64, "key_id": "k1"}),
            ("PUT", "/repos/octo/site/actions/secrets/FTP_HOST"): FakeResponse(201),
            ("PUT", "/repos/octo/site/actions/secrets/FTP_PASSWORD"): FakeResponse(204),
        })
        client = GitHubClient("ghp", session=session, use_gh_cli=False)

        client.set_secrets("octo", "site", {"FTP_HOST": "ftp.example.com", "FTP_PASSWORD": "pw"})

        put = session.calls[1][2]["json"]
        self.assertEqual(put["key_id"], "k1")
        sealed = base64.b64decode(put["encrypted_value"])
        self.assertEqual(public.SealedBox(private_key).decrypt(sealed), b"ftp.example.com")

    def test_encrypt_secret_round_trip(self) -> None:
        private_key = public.PrivateKey.generate()
        key_b64 = private_key.public_key.encode(encoding.Base64Encoder()).decode("utf-8")
        sealed = base64.b64decode(encrypt_secret(key_b64, "s3cret"))
        self.assertEqual(public.SealedBox(private_key).decrypt(sealed), b"s3cret")

    def test_dispatch(self) -> None:
        session = RoutedSession({("POST", "/repos/octo/site/dispatches"): FakeResponse(204)})
        GitHubClient("ghp", session=session).dispatch("octo", "site", "content_update", {"collection": "pages"})
        body = session.calls[0][2]["json"]
        self.assertEqual(body, {"event_type": "content_update", "client_payload": {"collection": "pages"}})

    def test_latest_run_since_ignores_older_runs(self) -> None:
        since = datetime(2024, 5, 1, 12, 0, 30, 500000, tzinfo=timezone.utc)
        session = RoutedSession({("GET", "/repos/octo/site/actions/runs"): FakeResponse(200, {"workflow_runs": [
            {"status": "completed", "conclusion": "success", "html_url": "old", "created_at": "2024-05-01T11:00:00Z"},
            {"status": "queued", "conclusion": None, "html_url": "new", "created_at": "2024-05-01T12:00:30Z"},
        ]})})
        client = GitHubClient("ghp", session=session)

        run = client.latest_run_since("octo", "site", since)

        self.assertEqual(run.html_url, "new")
        self.assertEqual(session.calls[0][2]["params"]["created"], ">=2024-05-01T12:00:30Z")

    def test_await_pipeline_run_reports_progress(self) -> None:
        runs = [
            FakeResponse(200, {"workflow_runs": []}),
            FakeResponse(200, {"workflow_runs": [
                {"status": "in_progress", "conclusion": None, "html_url": "u", "created_at": "2024-05-01T12:00:00Z"},
            ]}),
            FakeResponse(200, {"workflow_runs": [
                {"status": "completed", "conclusion": "failure", "html_url": "u", "created_at": "2024-05-01T12:00:00Z"},
            ]}),
        ]
        session = RoutedSession({("GET", "/repos/octo/site/actions/runs"): runs})
        client = GitHubClient("ghp", session=session)
        seen = []
        now = [0.0]

        def sleep(seconds: float) -> None:
            now[0] += seconds

        run = client.await_pipeline_run(
            "octo", "site", datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc),
            on_progress=seen.append, sleep=sleep, clock=lambda: now[0],
        )

        self.assertEqual([r.status for r in seen], ["in_progress", "completed"])
        self.assertTrue(run.completed)
        self.assertFalse(run.success)

    def test_await_pipeline_run_times_out(self) -> None:
        session = RoutedSession({("GET", "/repos/octo/site/actions/runs"): FakeResponse(200, {"workflow_runs": []})})
        now = [0.0]

        def sleep(seconds: float) -> None:
            now[0] += seconds

        with self.assertRaises(ReadinessTimeoutError):
            GitHubClient("ghp", session=session).await_pipeline_run(
                "octo", "site", datetime.now(timezone.utc),
                timeout=60, sleep=sleep, clock=lambda: now[0],
            )

    def test_workflow_run_flags(self) -> None:
        self.assertTrue(WorkflowRun("completed", "success", "u").success)
        self.assertFalse(WorkflowRun("in_progress", None, "u").completed)


if __name__ == "__main__":
    unittest.main()
