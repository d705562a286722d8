"""各 HTTP Provider 共用的响应处理。"""

import json
from typing import Any, Dict, Iterator

import httpx

from chat_core.domain.exceptions import ApiError, InvalidCredential, RateLimited


def raise_for_status(resp: httpx.Response, provider: str, streaming: bool = False) -> None:
    """把非 2xx 响应转换为业务异常。

    流式响应的 body 尚未读取，需要先 read() 才能拿到错误详情。
    """

    if resp.status_code < 400:
        return
    if streaming:
        resp.read()
    if resp.status_code in (401, 403):
        raise InvalidCredential(
            code="INVALID_CREDENTIAL",
            message=f"{provider} rejected the API key",
            http_status=resp.status_code,
            provider=provider,
        )
    if resp.status_code == 429:
        # 限流错误交给上层决定是否重试/退避
        raise RateLimited(code="RATE_LIMIT", message=f"{provider} rate limit", http_status=429, provider=provider)
    raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code, provider=provider)


def iter_sse_data(resp: httpx.Response) -> Iterator[Dict[str, Any]]:
    """解析 SSE 流中的 data 行，逐条产出 JSON 对象。

    空行、event 行、无法解析的行以及 [DONE] 终止符都会被跳过。
    """

    for line in resp.iter_lines():
        if not line:
            continue
        data_str = line.strip()
        if data_str.startswith("event:") or data_str.startswith(":"):
            continue
        if data_str.startswith("data:"):
            data_str = data_str[5:].strip()
        if not data_str or data_str == "[DONE]":
            continue
        try:
            payload = json.loads(data_str)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            yield payload
