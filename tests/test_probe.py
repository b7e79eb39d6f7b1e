import httpx
import pytest

from vcheck.probe import DeployedVersionProbe, ProbeParams, build_url, classify_body, extract, parse_query
from vcheck.status import ReadingKind

from conftest import TEMPLATE

PARAMS = ProbeParams(service_url_param="billing", region_url_param="eu", tenant="acme", environment="prod")


def _probe(handler, query=".version"):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return DeployedVersionProbe(TEMPLATE, query, timeout_s=1.0, client=client)


def test_build_url_substitutes_all_placeholders():
    assert build_url(TEMPLATE, PARAMS) == "https://probe.example/acme/prod/version?svc=billing&region=eu"
    tpl = "https://{service_url_param}.{region_url_param}.example.com/{effective_tenant}/{effective_env}/{unknown}"
    assert build_url(tpl, PARAMS) == "https://billing.eu.example.com/acme/prod/{unknown}"


def test_probe_extracts_version():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, json={"version": "2.0.0"})

    reading = _probe(handler).probe(PARAMS)
    assert reading.ok and reading.value == "2.0.0"
    assert seen == ["https://probe.example/acme/prod/version?svc=billing&region=eu"]


def test_probe_follows_redirects():
    def handler(request):
        if request.url.path.endswith("/version"):
            return httpx.Response(302, headers={"Location": "https://probe.example/moved"})
        return httpx.Response(200, json={"version": "1.1.1"})

    assert _probe(handler).probe(PARAMS).value == "1.1.1"


def test_timeout_and_transport_errors():
    def timeout(request):
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    assert _probe(timeout).probe(PARAMS).kind is ReadingKind.TIMEOUT
    r = _probe(refused).probe(PARAMS)
    assert r.kind is ReadingKind.TRANSPORT_ERROR
    assert r.label == "ERR_SVC_TRANSPORT(ConnectError)"


def test_probe_makes_exactly_one_call_per_probe():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(503, text="Service Unavailable")

    p = _probe(handler)
    p.probe(PARAMS)
    p.probe(PARAMS)
    assert len(calls) == 2


@pytest.mark.parametrize(
    "body,label",
    [
        ('{"statusCode": 503, "message": "down"}', "HTTP_503"),
        ('{"status": 404}', "HTTP_404"),
        ("<html><head><title>502</title></head></html>", "ERR_SVC_HTML_RESP"),
        ("Internal Server Error", "ERR_SVC_HTML_RESP"),
        ("not json at all", "ERR_SVC_PARSE"),
        ('{"version": null}', "ERR_SVC_PARSE"),
        ('{"version": ""}', "ERR_SVC_PARSE"),
        ("", "ERR_SVC_PARSE"),
    ],
)
def test_body_failure_classification(body, label):
    assert classify_body(body, ".version").label == label


def test_extraction_query_forms():
    doc = {"build": {"version": "3.2.1"}, "items": [{"tag": "v7"}], "dashed-key": 12}
    assert extract(doc, ".build.version") == "3.2.1"
    assert extract(doc, ".items[0].tag") == "v7"
    assert extract(doc, '."dashed-key"') == "12"
    assert extract(doc, ".version // .build.version") == "3.2.1"
    assert extract(doc, ".missing") is None
    assert extract(doc, ".build") is None
    assert extract("1.0.0", ".") == "1.0.0"


def test_unsupported_query_rejected():
    with pytest.raises(ValueError):
        parse_query("version")
    with pytest.raises(ValueError):
        parse_query(".a | .b")
