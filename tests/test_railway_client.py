import unittest

import requests

from cms_starter.railway import RailwayAPIError, RailwayClient, generate_secret


class FakeResponse:
    def __init__(self, payload=None, status_code: int = 200, text: str = "") -> None:
        self._payload = payload if payload is not None else {}
        self.status_code = status_code
        self.text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self):
        return self._payload


class ScriptedSession:
    """Returns queued responses in order and records every GraphQL request."""

    def __init__(self, responses) -> None:
        self.headers = {}
        self.responses = list(responses)
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append(json)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _data(data) -> FakeResponse:
    return FakeResponse({"data": data})


def _error(message: str) -> FakeResponse:
    return FakeResponse({"errors": [{"message": message}]})


_PROJECT = {
    "projectCreate": {
        "id": "proj-1",
        "environments": {"edges": [
            {"node": {"id": "env-staging", "name": "staging"}},
            {"node": {"id": "env-prod", "name": "production"}},
        ]},
    }
}


class RailwayClientTests(unittest.TestCase):
    def test_requires_token(self) -> None:
        with self.assertRaises(ValueError):
            RailwayClient("")

    def test_create_project_picks_production_environment(self) -> None:
        session = ScriptedSession([_data(_PROJECT)])
        client = RailwayClient("rw", session=session)

        project = client.create_project("my-site")

        self.assertEqual(project.project_id, "proj-1")
        self.assertEqual(project.environment_id, "env-prod")
        self.assertEqual(session.requests[0]["variables"], {"name": "my-site"})
        self.assertEqual(session.headers["Authorization"], "Bearer rw")

    def test_create_project_retries_with_workspace(self) -> None:
        session = ScriptedSession([
            _error("You must specify a workspaceId to create a project"),
            _data({"apiToken": {"workspaces": [{"id": "ws-1", "name": "Team"}]}}),
            _data(_PROJECT),
        ])
        client = RailwayClient("rw", session=session)

        project = client.create_project("my-site")

        self.assertEqual(project.project_id, "proj-1")
        self.assertEqual(session.requests[2]["variables"], {"name": "my-site", "workspaceId": "ws-1"})

    def test_create_project_reports_id_before_reading_environments(self) -> None:
        session = ScriptedSession([_data({"projectCreate": {"id": "proj-9", "environments": {"edges": []}}})])
        created = []

        with self.assertRaises(RailwayAPIError) as ctx:
            RailwayClient("rw", session=session).create_project("my-site", on_created=created.append)

        self.assertEqual(created, ["proj-9"])
        self.assertIn("proj-9 has no environments", str(ctx.exception))

    def test_create_project_without_id(self) -> None:
        session = ScriptedSession([_data({"projectCreate": None})])
        created = []
        with self.assertRaises(RailwayAPIError):
            RailwayClient("rw", session=session).create_project("my-site", on_created=created.append)
        self.assertEqual(created, [])

    def test_workspace_lookup_with_session_token(self) -> None:
        session = ScriptedSession([
            _error("You must specify a workspaceId to create a project"),
            _error("Not Authorized"),
        ])
        with self.assertRaises(RailwayAPIError) as ctx:
            RailwayClient("rw", session=session).create_project("my-site")
        self.assertIn("API token", str(ctx.exception))

    def test_graphql_and_http_errors(self) -> None:
        client = RailwayClient("rw", session=ScriptedSession([_error("quota exceeded")]))
        with self.assertRaises(RailwayAPIError) as ctx:
            client.delete_project("proj-1")
        self.assertEqual(str(ctx.exception), "Railway API error (delete project): quota exceeded")

        client = RailwayClient("rw", session=ScriptedSession([FakeResponse(status_code=500, text="oops")]))
        with self.assertRaises(RailwayAPIError):
            client.delete_project("proj-1")

        client = RailwayClient("rw", session=ScriptedSession([requests.ConnectionError("down")]))
        with self.assertRaises(RailwayAPIError):
            client.delete_project("proj-1")

    def test_find_project_by_name(self) -> None:
        projects = {"projects": {"edges": [
            {"node": {"id": "a", "name": "other"}},
            {"node": {"id": "b", "name": "my-site"}},
        ]}}
        client = RailwayClient("rw", session=ScriptedSession([_data(projects), _data(projects)]))
        self.assertEqual(client.find_project_by_name("my-site"), "b")
        self.assertIsNone(client.find_project_by_name("missing"))

    def test_public_domain_is_https(self) -> None:
        session = ScriptedSession([_data({"serviceDomainCreate": {"domain": "site.up.railway.app"}})])
        url = RailwayClient("rw", session=session).get_public_domain("env", "svc")
        self.assertEqual(url, "https://site.up.railway.app")

    def test_provision_database(self) -> None:
        session = ScriptedSession([
            _data({"serviceCreate": {"id": "pg"}}),
            _data({"volumeCreate": {"id": "vol"}}),
            _data({"variableCollectionUpsert": True}),
            _data({"serviceInstanceDeploy": True}),
            _data({"service": {"deployments": {"edges": [{"node": {"status": "DEPLOYING"}}]}}}),
            _data({"service": {"deployments": {"edges": [{"node": {"status": "SUCCESS"}}]}}}),
        ])
        sleeps = []
        client = RailwayClient("rw", session=session, sleep=sleeps.append)

        url = client.provision_database("proj-1", "env-prod", max_attempts=5, interval=3)

        self.assertTrue(url.startswith("postgresql://payload:"))
        self.assertTrue(url.endswith("@Postgres.railway.internal:5432/payload"))
        variables = session.requests[2]["variables"]["variables"]
        self.assertIn(variables["POSTGRES_PASSWORD"], url)
        self.assertEqual(sleeps, [3])

    def test_provision_database_returns_url_when_unconfirmed(self) -> None:
        pending = _data({"service": {"deployments": {"edges": []}}})
        session = ScriptedSession([
            _data({"serviceCreate": {"id": "pg"}}),
            _data({"volumeCreate": {"id": "vol"}}),
            _data({"variableCollectionUpsert": True}),
            _data({"serviceInstanceDeploy": True}),
            pending, pending,
        ])
        client = RailwayClient("rw", session=session, sleep=lambda s: None)
        url = client.provision_database("proj-1", "env-prod", max_attempts=2)
        self.assertIn("Postgres.railway.internal", url)

    def test_generate_secret(self) -> None:
        self.assertEqual(len(generate_secret()), 64)
        self.assertNotEqual(generate_secret(), generate_secret())


if __name__ == "__main__":
    unittest.main()
