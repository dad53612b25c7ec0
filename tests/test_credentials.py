"""Unit tests for the credentials module."""

import base64
import threading
from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from src.credentials import (
    REDACTED,
    AccessDeniedError,
    Credential,
    InMemorySecretResolver,
    SecretManagerResolver,
    SecretNotFoundError,
    SecretRedactor,
    SecretResolverError,
)


def _http_error(status: int) -> HttpError:
    resp = MagicMock()
    resp.status = status
    return HttpError(resp=resp, content=b"error")


class TestCredential:
    def test_repr_hides_value(self):
        credential = Credential(name="registry-password", value="hunter2")
        assert "hunter2" not in repr(credential)
        assert "registry-password" in repr(credential)

    def test_empty_scope_allows_any_stage(self):
        credential = Credential(name="token", value="x")
        assert credential.allows("publish") is True
        assert credential.allows("deploy") is True

    def test_scope_limits_stages(self):
        credential = Credential(name="token", value="x", scope=frozenset({"publish"}))
        assert credential.allows("publish") is True
        assert credential.allows("build") is False


class TestInMemorySecretResolver:
    def test_resolves_declared_names_only(self):
        resolver = InMemorySecretResolver(
            [
                Credential(name="a", value="1"),
                Credential(name="b", value="2"),
            ]
        )
        assert resolver.resolve(["a"], stage_name="publish") == {"a": "1"}

    def test_missing_secret_raises(self):
        resolver = InMemorySecretResolver()
        with pytest.raises(SecretNotFoundError) as exc_info:
            resolver.resolve(["nope"])
        assert exc_info.value.name == "nope"

    def test_out_of_scope_stage_denied(self):
        resolver = InMemorySecretResolver(
            [Credential(name="deploy-key", value="k", scope=frozenset({"deploy"}))]
        )
        with pytest.raises(AccessDeniedError) as exc_info:
            resolver.resolve(["deploy-key"], stage_name="build")
        assert exc_info.value.stage_name == "build"
        assert "k" not in str(exc_info.value).replace("deploy-key", "")

    def test_records_calls(self):
        resolver = InMemorySecretResolver([Credential(name="a", value="1")])
        resolver.resolve(["a"], stage_name="publish")
        assert resolver.resolve_calls == [(("a",), "publish")]

    def test_add_replaces_credential(self):
        resolver = InMemorySecretResolver([Credential(name="a", value="old")])
        resolver.add(Credential(name="a", value="new"))
        assert resolver.resolve(["a"]) == {"a": "new"}


class TestSecretManagerResolver:
    @pytest.fixture
    def mock_service(self):
        return MagicMock()

    @pytest.fixture
    def resolver(self, mock_service):
        authenticator = MagicMock()
        authenticator.build_service.return_value = mock_service
        return SecretManagerResolver(project_id="acme", authenticator=authenticator)

    def test_decodes_payload(self, resolver, mock_service):
        encoded = base64.b64encode(b"hunter2").decode()
        mock_service.projects().secrets().versions().access().execute.return_value = {
            "name": "projects/acme/secrets/registry-password/versions/3",
            "payload": {"data": encoded},
        }

        assert resolver.resolve(["registry-password"]) == {"registry-password": "hunter2"}
        mock_service.projects().secrets().versions().access.assert_called_with(
            name="projects/acme/secrets/registry-password/versions/latest"
        )

    def test_uses_secret_manager_v1(self, resolver):
        resolver._get_service()
        resolver._get_service()
        resolver._authenticator.build_service.assert_called_once_with("secretmanager", "v1")

    def test_each_thread_gets_its_own_service(self, resolver):
        resolver._authenticator.build_service.side_effect = lambda api, version: MagicMock()
        services = []
        worker = threading.Thread(target=lambda: services.append(resolver._get_service()))
        worker.start()
        worker.join()

        assert resolver._get_service() is not services[0]
        assert resolver._authenticator.build_service.call_count == 2

    def test_not_found(self, resolver, mock_service):
        mock_service.projects().secrets().versions().access().execute.side_effect = (
            _http_error(404)
        )
        with pytest.raises(SecretNotFoundError):
            resolver.resolve(["missing"])

    def test_permission_denied(self, resolver, mock_service):
        mock_service.projects().secrets().versions().access().execute.side_effect = (
            _http_error(403)
        )
        with pytest.raises(AccessDeniedError):
            resolver.resolve(["locked"])

    def test_server_error(self, resolver, mock_service):
        mock_service.projects().secrets().versions().access().execute.side_effect = (
            _http_error(500)
        )
        with pytest.raises(SecretResolverError) as exc_info:
            resolver.resolve(["flaky"])
        assert not isinstance(exc_info.value, SecretNotFoundError)

    def test_missing_payload(self, resolver, mock_service):
        mock_service.projects().secrets().versions().access().execute.return_value = {}
        with pytest.raises(SecretResolverError):
            resolver.resolve(["empty"])


class TestSecretRedactor:
    def test_redacts_registered_values(self):
        redactor = SecretRedactor()
        redactor.register(["hunter2"])
        assert redactor.redact("password=hunter2") == f"password={REDACTED}"

    def test_longest_value_masked_first(self):
        redactor = SecretRedactor()
        redactor.register(["abc", "abcdef"])
        assert redactor.redact("token abcdef") == f"token {REDACTED}"

    def test_values_are_reference_counted(self):
        redactor = SecretRedactor()
        redactor.register(["shared"])
        redactor.register(["shared"])
        redactor.discard(["shared"])
        assert redactor.redact("shared") == REDACTED
        redactor.discard(["shared"])
        assert redactor.redact("shared") == "shared"

    def test_empty_values_ignored(self):
        redactor = SecretRedactor()
        redactor.register([""])
        assert redactor.redact("text") == "text"
