"""Tests for the analysis proxy client."""

import asyncio

import httpx
import pytest  # pylint: disable=import-error

from heartqueue.exceptions import AnalysisProxyDecodeError, AnalysisProxyTransportError
from heartqueue.models import AnalyzeStatus, TempoWindow
from heartqueue.services.analysis_client import AnalysisProxyClient


def make_client(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AnalysisProxyClient("http://proxy.test/", client=client)


def analyze(handler, **kwargs):
    return asyncio.run(make_client(handler).analyze("seed", **kwargs))


def test_build_params():
    """Test query parameters for a filtered request"""
    params = AnalysisProxyClient.build_params("seed", TempoWindow(start=150, end=190), ["electronic", "rock"])
    assert params == {"trackId": "seed", "bpmStart": 150, "bpmEnd": 190, "genres": "electronic,rock"}
    assert AnalysisProxyClient.build_params("seed") == {"trackId": "seed"}


def test_success_response():
    """Test a success payload is decoded and the request is well formed"""
    seen = {}

    def handler(request):
        seen["url"] = f"{request.url.host}{request.url.path}"
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"status": "success", "trackIds": ["a", "", "b"]})

    result = analyze(handler, tempo=TempoWindow(start=150, end=190), genres=["rock"])

    assert result.status == AnalyzeStatus.SUCCESS
    assert result.track_ids == ["a", "b"]
    assert seen["url"] == "proxy.test/api/analyze"
    assert seen["params"] == {"trackId": "seed", "bpmStart": "150", "bpmEnd": "190", "genres": "rock"}


def test_analyzing_response():
    """Test the analyzing status is passed through"""
    result = analyze(lambda request: httpx.Response(200, json={"status": "analyzing"}))
    assert result.status == AnalyzeStatus.ANALYZING
    assert result.track_ids is None


def test_legacy_single_id_payload():
    """Test older proxies answering with one trackId are accepted"""
    result = analyze(lambda request: httpx.Response(200, json={"status": "success", "trackId": "only"}))
    assert result.track_ids == ["only"]


def test_error_payload_keeps_message():
    """Test an error payload keeps the proxy message"""
    result = analyze(lambda request: httpx.Response(500, json={"status": "error", "error": "upstream down"}))
    assert result.status == AnalyzeStatus.ERROR
    assert result.error == "upstream down"

    result = analyze(lambda request: httpx.Response(502, json={"status": "error"}))
    assert result.error == "proxy failure (502)"


def test_missing_status_is_stale_server():
    """Test a payload without status is reported as a decode error"""
    with pytest.raises(AnalysisProxyDecodeError, match="stale server version"):
        analyze(lambda request: httpx.Response(200, json={"trackIds": ["a"]}))


def test_unparseable_body():
    """Test non-JSON bodies are decode errors on 2xx and transport errors otherwise"""
    with pytest.raises(AnalysisProxyDecodeError, match="parse failure"):
        analyze(lambda request: httpx.Response(200, content=b"not json"))
    with pytest.raises(AnalysisProxyTransportError, match="proxy failure"):
        analyze(lambda request: httpx.Response(503, content=b"Service Unavailable"))


def test_unknown_status_is_decode_error():
    """Test an unknown status value is a schema error"""
    with pytest.raises(AnalysisProxyDecodeError, match="unexpected response schema"):
        analyze(lambda request: httpx.Response(200, json={"status": "queued"}))


def test_connection_error():
    """Test network failures surface as transport errors"""

    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(AnalysisProxyTransportError):
        analyze(handler)
