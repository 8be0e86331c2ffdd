"""Thin wrapper around the GitHub REST endpoints used by search and replace."""

from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import requests

from .http_client import GitHubSession, log_http_error

SHA_MISMATCH_HINTS = ("does not match", "sha wasn't supplied", "is at")


class GitHubAPIError(RuntimeError):
    """A GitHub call returned a non-success status."""

    def __init__(self, status_code: int, message: str, url: str) -> None:
        super().__init__(f"HTTP {status_code} for {url}: {message}")
        self.status_code = status_code
        self.message = message
        self.url = url


class GitHubConflictError(GitHubAPIError):
    """A file update was rejected because its blob sha is no longer current."""


def _raise_for_status(resp: requests.Response, url: str) -> None:
    if 200 <= resp.status_code < 300:
        return
    message = log_http_error(resp, url)
    raise GitHubAPIError(resp.status_code, message, url)


def _path(value: str) -> str:
    return quote(value, safe="/")


class GitHubClient:
    """The handful of code search, contents, git refs and pulls calls this tool needs."""

    def __init__(self, http: GitHubSession) -> None:
        self.http = http

    def _get(self, path: str, **kwargs) -> Any:
        resp = self.http.request_with_backoff("GET", path, **kwargs)
        _raise_for_status(resp, self.http.url(path))
        return resp.json()

    def _send(self, method: str, path: str, payload: Dict[str, Any]) -> Any:
        resp = self.http.request_with_backoff(method, path, json=payload)
        _raise_for_status(resp, self.http.url(path))
        return resp.json() if resp.content else {}

    def search_code(self, query: str, page: int, per_page: int) -> Dict[str, Any]:
        """Return one page of code search results as ``{"items", "total_count"}``."""
        data = self._get(
            "/search/code",
            params={"q": query, "page": page, "per_page": per_page},
        )
        return {
            "items": list(data.get("items") or []),
            "total_count": int(data.get("total_count") or 0),
            "incomplete_results": bool(data.get("incomplete_results")),
        }

    def get_file_content(self, owner: str, repo: str, path: str, ref: str) -> Optional[Tuple[str, str]]:
        """Return ``(text, sha)`` for a file, or None for directories and other non-file entries.

        Raises ``ValueError`` when the blob is not inline base64 or not UTF-8 text.
        """
        data = self._get(f"/repos/{owner}/{repo}/contents/{_path(path)}", params={"ref": ref})
        if isinstance(data, list) or data.get("type") != "file":
            return None
        if data.get("encoding") != "base64":
            raise ValueError(f"unsupported content encoding {data.get('encoding')!r}")
        raw = base64.b64decode(data.get("content") or "")
        return raw.decode("utf-8"), data["sha"]

    def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        data = self._get(f"/repos/{owner}/{repo}")
        visibility = data.get("visibility") or ("private" if data.get("private") else "public")
        return {
            "full_name": data.get("full_name") or f"{owner}/{repo}",
            "default_branch": data.get("default_branch") or "main",
            "archived": bool(data.get("archived")),
            "visibility": visibility,
        }

    def get_branch_sha(self, owner: str, repo: str, branch: str) -> str:
        data = self._get(f"/repos/{owner}/{repo}/git/ref/heads/{_path(branch)}")
        return data["object"]["sha"]

    def create_branch(self, owner: str, repo: str, branch: str, sha: str) -> None:
        self._send("POST", f"/repos/{owner}/{repo}/git/refs", {"ref": f"refs/heads/{branch}", "sha": sha})

    def update_file(
        self,
        owner: str,
        repo: str,
        path: str,
        message: str,
        content: str,
        sha: str,
        branch: str,
    ) -> str:
        """Commit new file content on ``branch``; return the new commit sha.

        ``sha`` is the blob sha the content was derived from. GitHub rejects the
        write when the branch holds a different blob, which surfaces here as
        ``GitHubConflictError``.
        """
        url_path = f"/repos/{owner}/{repo}/contents/{_path(path)}"
        payload = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "sha": sha,
            "branch": branch,
        }
        try:
            data = self._send("PUT", url_path, payload)
        except GitHubAPIError as exc:
            message_lower = exc.message.lower()
            if exc.status_code == 409 or (
                exc.status_code == 422 and any(hint in message_lower for hint in SHA_MISMATCH_HINTS)
            ):
                raise GitHubConflictError(exc.status_code, exc.message, exc.url) from exc
            raise
        return ((data.get("commit") or {}).get("sha")) or ""

    def create_pull_request(self, owner: str, repo: str, title: str, head: str, base: str, body: str) -> Dict[str, Any]:
        data = self._send(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            {"title": title, "head": head, "base": base, "body": body},
        )
        return {"number": int(data["number"]), "html_url": data.get("html_url") or ""}

    def add_labels(self, owner: str, repo: str, issue_number: int, labels: Sequence[str]) -> List[str]:
        data = self._send(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/labels",
            {"labels": list(labels)},
        )
        return [label.get("name") for label in data if isinstance(label, dict)] if isinstance(data, list) else []


__all__ = ["GitHubAPIError", "GitHubConflictError", "GitHubClient"]
