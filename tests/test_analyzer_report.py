from datetime import datetime

import numpy as np
import pytest
import requests
from requests.structures import CaseInsensitiveDict

from pagespeed_analyzer.errors import JobStateError
from pagespeed_analyzer.models import AnalysisJob, JobStatus
from pagespeed_analyzer.services import analyzer, report


def _backend(response_time=150.0, https=True, cache=True, compression=True, **security):
    return {
        "serverTechnology": "Nginx",
        "responseTime": response_time,
        "httpVersion": "HTTP/2",
        "compressionEnabled": compression,
        "securityHeaders": {
            "hasHTTPS": https,
            "hasHSTS": security.get("hsts", False),
            "hasCSP": security.get("csp", False),
            "hasXFrameOptions": security.get("xfo", False),
        },
        "cacheHeaders": {"hasCacheControl": cache, "hasETag": False, "hasLastModified": False},
        "database": None,
    }


@pytest.mark.parametrize("seed", range(20))
def test_scores_stay_in_range(seed):
    rng = np.random.default_rng(seed)
    backend = _backend(response_time=float(rng.integers(50, 3000)), https=bool(seed % 2), cache=bool(seed % 3))
    scores = analyzer.compute_scores(backend, rng)
    assert set(scores) == set(report.SCORE_KEYS)
    for value in scores.values():
        assert isinstance(value, int)
        assert 0 <= value <= 100


def test_backend_bonus_bands():
    assert analyzer._backend_bonus(100) == 10
    assert analyzer._backend_bonus(300) == 5
    assert analyzer._backend_bonus(800) == 0
    assert analyzer._backend_bonus(1500) == -15


def test_metrics_scale_with_score_and_server_time():
    fast = analyzer.compute_metrics(100, 0)
    assert fast["firstContentfulPaint"] == 1200
    assert fast["cumulativeLayoutShift"] == 0.1

    slow = analyzer.compute_metrics(50, 400)
    assert slow["firstContentfulPaint"] == 1200 * 2 + 400
    assert slow["totalBlockingTime"] == 150 * 2


def test_recommendations_follow_findings():
    ids = {r["id"] for r in analyzer.build_recommendations(60, _backend(900, https=False, cache=False, compression=False))}
    assert ids == {"optimize-images", "improve-server-response", "enable-compression", "enable-https", "implement-caching"}
    assert analyzer.build_recommendations(95, _backend()) == []


def test_timeline_shape():
    timeline = analyzer.build_timeline()
    assert len(timeline) == 11
    assert timeline[0] == {"time": 0, "progress": 0}
    assert timeline[-1] == {"time": 3000, "progress": 100}


def test_analyze_website_is_reproducible_with_seed():
    def run():
        rng = np.random.default_rng(99)
        return analyzer.analyze_website("https://example.com", "mobile", rng=rng, probe=lambda u: _backend())
    assert run() == run()


def test_analyze_website_simulated_failure():
    with pytest.raises(analyzer.SimulatedAnalysisFailure):
        analyzer.analyze_website("https://example.com", rng=np.random.default_rng(1),
                                 probe=lambda u: _backend(), failure_rate=1.0)


def test_probe_of_unreachable_host(monkeypatch):
    def refuse(*args, **kwargs):
        raise requests.ConnectionError("refused")
    monkeypatch.setattr(analyzer.requests, "head", refuse)

    backend = analyzer.probe_backend("https://down.example", timeout=1)
    assert backend["serverTechnology"] == "Unknown (inaccessible)"
    assert backend["responseTime"] == 5000


def test_probe_reads_headers(monkeypatch):
    class Resp:
        url = "https://shop.example/"
        headers = CaseInsensitiveDict({
            "Server": "Puma",
            "Content-Encoding": "br",
            "Strict-Transport-Security": "max-age=63072000",
            "Cache-Control": "max-age=60",
            "CF-Ray": "abc",
        })

    monkeypatch.setattr(analyzer.requests, "head", lambda *a, **k: Resp())

    backend = analyzer.probe_backend("http://shop.example", rng=np.random.default_rng(3))
    assert backend["serverTechnology"] == "Ruby/Rails"
    assert backend["compressionEnabled"] is True
    assert backend["securityHeaders"]["hasHTTPS"] is True
    assert backend["securityHeaders"]["hasHSTS"] is True
    assert backend["cacheHeaders"]["hasCacheControl"] is True
    assert backend["serverLocation"] == "CDN (Cloudflare)"
    assert set(backend["database"]) == {"queryTime", "connectionPool", "slowQueries"}


@pytest.mark.parametrize("score,level", [(95, "excellent"), (80, "good"), (60, "needs_improvement"), (30, "poor")])
def test_overall_health_levels(score, level):
    result = {k: score for k in report.SCORE_KEYS}
    assert report.overall_health(result) == level


def test_security_assessment():
    full = report.assess_security({"hasHTTPS": True, "hasHSTS": True, "hasCSP": True, "hasXFrameOptions": True})
    assert full == {"score": 100, "level": "strong", "missing_protections": []}

    https_only = report.assess_security({"hasHTTPS": True})
    assert https_only["score"] == 40
    assert https_only["level"] == "basic"
    assert report.assess_security({})["level"] == "weak"


def test_report_on_unfinished_job_is_rejected():
    job = AnalysisJob(id=1, url="https://example.com", device="desktop", status=JobStatus.PENDING)
    with pytest.raises(JobStateError):
        report.build_integrated_report(job)


def test_report_flags_slow_insecure_site():
    rng = np.random.default_rng(5)
    result = analyzer.analyze_website(
        "http://slow.example", rng=rng,
        probe=lambda u: _backend(1800.0, https=False, cache=False, compression=False),
    )
    job = AnalysisJob(id=3, url="http://slow.example", device="desktop", status=JobStatus.COMPLETED,
                      result=result, completed_at=datetime(2024, 1, 2, 3, 4, 5))

    out = report.build_integrated_report(job)

    assert out["summary"]["analyzed_at"] == "2024-01-02T03:04:05Z"
    issues = {i["issue"] for i in out["performance_insights"]["critical_issues"]}
    assert {"HTTPS missing", "Slow server"} <= issues
    assert out["backend_infrastructure"]["server_performance"]["response_time"]["status"] == "slow"
    assert out["correlation_analysis"]["optimization_priority"][0]["priority"] == 1
    categories = {r["category"] for r in out["integrated_recommendations"]}
    assert {"server", "security"} <= categories
