"""
Tests for the GitHub client against a mocked transport.

Checks URL normalization and that provider responses map onto the error
taxonomy (exists / not found / conflict), since the orchestrators branch
on those types.
"""

import base64
import json

import httpx
import pytest

from hostfix.errors import (
    BranchExistsError,
    CapabilityError,
    FileConflictError,
    InvalidRepositoryError,
    RepoFileNotFoundError,
    RepositoryExistsError,
)
from hostfix.integrations.github import GITHUB_API_URL, GitHubClient, parse_repo_url


@pytest.mark.parametrize("url", [
    "https://github.com/acme/shop",
    "https://github.com/acme/shop/",
    "https://github.com/acme/shop.git",
    "git@github.com:acme/shop.git",
    "https://github.com/acme/shop/tree/main/src",
    "acme/shop",
])
def test_parse_repo_url(url):
    assert parse_repo_url(url) == "acme/shop"


@pytest.mark.parametrize("url", ["", "not a url", "https://gitlab.com/acme/shop"])
def test_parse_repo_url_rejects(url):
    with pytest.raises(InvalidRepositoryError):
        parse_repo_url(url)


def make_client(handler, managed_owner="hostfix-managed"):
    http = httpx.Client(base_url=GITHUB_API_URL, transport=httpx.MockTransport(handler))
    return GitHubClient(managed_owner=managed_owner, http_client=http)


def test_fork_sends_managed_owner_and_name():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(202, json={"full_name": "hostfix-managed/shop-hosted", "default_branch": "main"})

    info = make_client(handler).fork_repo("acme/shop")

    assert info.full_name == "hostfix-managed/shop-hosted"
    assert seen["path"] == "/repos/acme/shop/forks"
    assert seen["body"] == {"name": "shop-hosted", "default_branch_only": True, "organization": "hostfix-managed"}


def test_fork_exists():
    client = make_client(lambda request: httpx.Response(422, json={"message": "name already exists"}))
    with pytest.raises(RepositoryExistsError):
        client.fork_repo("acme/shop")


def test_get_repo_info_not_found():
    client = make_client(lambda request: httpx.Response(404, json={"message": "Not Found"}))
    with pytest.raises(RepoFileNotFoundError):
        client.get_repo_info("acme/shop")


def test_get_file_decodes_content():
    encoded = base64.b64encode(b"hello\n").decode()
    client = make_client(lambda request: httpx.Response(200, json={"content": encoded, "sha": "abc123"}))

    repo_file = client.get_file("acme/shop", "README.md", "main")

    assert repo_file.content == "hello\n"
    assert repo_file.sha == "abc123"


def test_get_file_on_directory():
    client = make_client(lambda request: httpx.Response(200, json=[{"path": "src/a.ts"}]))
    with pytest.raises(RepoFileNotFoundError):
        client.get_file("acme/shop", "src")


def test_put_file_conditional_on_sha():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"commit": {"sha": "c0ffee"}})

    sha = make_client(handler).put_file("acme/shop", "a.ts", "x", "msg", "fix/1", expected_sha="abc123")

    assert sha == "c0ffee"
    assert seen["body"]["sha"] == "abc123"
    assert seen["body"]["branch"] == "fix/1"
    assert base64.b64decode(seen["body"]["content"]) == b"x"


def test_put_file_conflict():
    client = make_client(lambda request: httpx.Response(409, json={"message": "sha does not match"}))
    with pytest.raises(FileConflictError):
        client.put_file("acme/shop", "a.ts", "x", "msg", "fix/1", expected_sha="stale")


def test_create_branch_exists():
    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json={"object": {"sha": "base123"}})
        return httpx.Response(422, json={"message": "Reference already exists"})

    with pytest.raises(BranchExistsError):
        make_client(handler).create_branch("acme/shop", "fix/1", "main")


def test_merge_nothing_to_merge():
    client = make_client(lambda request: httpx.Response(204))
    assert client.merge_branch("acme/shop", "main", "fix/1", "msg") is None


def test_list_files_returns_blobs_only():
    tree = {"tree": [
        {"path": "src", "type": "tree"},
        {"path": "src/main.tsx", "type": "blob"},
        {"path": "package.json", "type": "blob"},
    ]}
    client = make_client(lambda request: httpx.Response(200, json=tree))
    assert client.list_files("acme/shop", "main") == ["src/main.tsx", "package.json"]


def test_server_error_is_capability_error():
    client = make_client(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(CapabilityError):
        client.delete_branch("acme/shop", "fix/1")


def test_unconfigured_client():
    with pytest.raises(CapabilityError):
        GitHubClient().get_repo_info("acme/shop")
