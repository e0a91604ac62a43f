import pytest

from warden.cluster import InMemoryClient, ObjectMeta, Pod, Secret
from warden.credentials import AuthConfig, get_remote_pull_credentials


def _secret(data):
    return Secret(metadata=ObjectMeta(name="secret", namespace="default"), data=data)


def _pod(pull_secrets=()):
    return Pod(metadata=ObjectMeta(namespace="default"), image_pull_secrets=list(pull_secrets))


def test_no_secrets():
    client = InMemoryClient()
    assert get_remote_pull_credentials(client, Pod()) == {}


def test_missing_secret():
    client = InMemoryClient()
    assert get_remote_pull_credentials(client, _pod(["secret"])) == {}


def test_incorrect_secret():
    client = InMemoryClient([_secret({"incorrectKey": b"someData"})])
    with pytest.raises(ValueError, match="no dockerconfigjson or config.json"):
        get_remote_pull_credentials(client, _pod(["secret"]))


def test_malformed_secret():
    client = InMemoryClient([_secret({".dockerconfigjson": b"someData"})])
    with pytest.raises(ValueError, match="failed to unmarshal"):
        get_remote_pull_credentials(client, _pod(["secret"]))


def test_secret_with_dockerconfigjson():
    raw = b'{"auths": {"registry": {"username": "user", "password": "password"}}}'
    client = InMemoryClient([_secret({".dockerconfigjson": raw})])
    password = "password"
    assert get_remote_pull_credentials(client, _pod(["secret"])) == {
        "registry": AuthConfig(username="user", password=password)
    }


def test_secret_with_config_json():
    raw = b'{"auths": {"registry": {"auth": "token"}}}'
    client = InMemoryClient([_secret({"config.json": raw})])
    assert get_remote_pull_credentials(client, _pod(["secret"])) == {
        "registry": AuthConfig(auth="token")
    }


def test_protocol_and_trailing_slash_are_removed():
    raw = b'{"auths": {"https://registry.example.com/": {"username": "user"}}}'
    client = InMemoryClient([_secret({".dockerconfigjson": raw})])
    result = get_remote_pull_credentials(client, _pod(["secret"]))
    assert list(result) == ["registry.example.com"]
    assert result["registry.example.com"].username == "user"


def test_other_reader_error_is_wrapped():
    class _BrokenReader:
        def get(self, kind, namespace, name):
            raise PermissionError("forbidden")

    with pytest.raises(RuntimeError, match="can't get default/secret"):
        get_remote_pull_credentials(_BrokenReader(), _pod(["secret"]))