"""Direct-call helpers: adapt per-command options into capability requests."""

from __future__ import annotations

from typing import Any, Dict, Optional

from zaicli.mcp.schema import CapabilityRequest


def search_request(
    query: str,
    count: int = 10,
    recency: Optional[str] = None,
    domain: Optional[str] = None,
) -> CapabilityRequest:
    arguments: Dict[str, Any] = {
        "search_engine": "search-prime",
        "search_query": query,
        "count": count,
    }
    if recency:
        arguments["search_recency_filter"] = recency
    if domain:
        arguments["search_domain_filter"] = domain
    return CapabilityRequest(capability_id="search", arguments=arguments)


def read_request(
    url: str,
    timeout: int = 30,
    return_format: str = "markdown",
    retain_images: bool = True,
    no_gfm: bool = False,
    keep_data_urls: bool = False,
    with_images_summary: bool = False,
) -> CapabilityRequest:
    """``timeout`` is the reader's own fetch timeout in seconds, not ours."""
    return CapabilityRequest(capability_id="read", arguments={
        "url": url,
        "timeout": timeout,
        "return_format": return_format,
        "retain_images": retain_images,
        "no_gfm": no_gfm,
        "keep_img_data_url": keep_data_urls,
        "with_images_summary": with_images_summary,
    })


def repo_search_request(repo: str, query: str, language: Optional[str] = None) -> CapabilityRequest:
    arguments: Dict[str, Any] = {"repo_name": repo, "query": query}
    if language:
        arguments["language"] = language
    return CapabilityRequest(capability_id="repo.search", arguments=arguments)


def repo_tree_request(repo: str, path: Optional[str] = None) -> CapabilityRequest:
    arguments: Dict[str, Any] = {"repo_name": repo}
    if path:
        arguments["dir_path"] = path
    return CapabilityRequest(capability_id="repo.tree", arguments=arguments)


def repo_read_request(repo: str, path: str) -> CapabilityRequest:
    return CapabilityRequest(capability_id="repo.read", arguments={"repo_name": repo, "file_path": path})


def vision_request(image: str, prompt: str) -> CapabilityRequest:
    return CapabilityRequest(capability_id="vision", arguments={"image_source": image, "prompt": prompt})


def video_request(video: str, prompt: str) -> CapabilityRequest:
    return CapabilityRequest(capability_id="video", arguments={"video_source": video, "prompt": prompt})


def chat_request(prompt: str, model: str = "glm-4.6", system: Optional[str] = None) -> CapabilityRequest:
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})
    return CapabilityRequest(capability_id="chat", arguments={"model": model, "messages": messages})
