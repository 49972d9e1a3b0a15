# pagespeed_analyzer/services/analyzer.py
"""
Simulated page performance analysis.

There is no real browser audit behind this: scores are drawn from a random
generator and nudged by a lightweight HEAD probe of the target server. The
output has the same shape a Lighthouse-style audit would produce, so the
rest of the system (runner, report, API) does not care where it came from.
"""
import time
import logging
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

import numpy as np
import requests

logger = logging.getLogger(__name__)

USER_AGENT = "PageSpeed-Analyzer/1.0"

# (base value, whether server response time is added)
_METRIC_BASES = {
    "firstContentfulPaint": (1200.0, True),     # ms
    "largestContentfulPaint": (2500.0, True),   # ms
    "totalBlockingTime": (150.0, False),        # ms
    "cumulativeLayoutShift": (0.1, False),      # unitless
    "speedIndex": (2000.0, True),               # ms
}


class SimulatedAnalysisFailure(RuntimeError):
    pass


def _make_rng(seed: Optional[int] = None) -> np.random.Generator:
    return np.random.default_rng(seed)


def _clamp_score(value: float) -> int:
    return int(max(0, min(100, round(value))))


# ---------------------------
# Backend probe
# ---------------------------

def _detect_server_technology(server_header: str, powered_by: str) -> str:
    server = (server_header or "").lower()
    powered = (powered_by or "").lower()
    if any(tok in server for tok in ("ruby", "puma", "unicorn")) or "ruby" in powered:
        return "Ruby/Rails"
    if "nginx" in server:
        return "Nginx"
    if "apache" in server:
        return "Apache"
    if "iis" in server:
        return "IIS"
    return server_header or "Unknown"


def _detect_server_location(headers) -> Optional[str]:
    if "cf-ray" in headers:
        return "CDN (Cloudflare)"
    if "x-served-by" in headers:
        return "CDN (Fastly)"
    if "x-cache" in headers:
        return "CDN"
    return None


def _simulated_database(rng: np.random.Generator) -> Dict[str, Any]:
    return {
        "queryTime": int(rng.integers(50, 150)),
        "connectionPool": int(rng.integers(5, 15)),
        "slowQueries": int(rng.integers(0, 10)),
    }


def inaccessible_profile() -> Dict[str, Any]:
    return {
        "serverTechnology": "Unknown (inaccessible)",
        "responseTime": 5000.0,
        "httpVersion": "Unknown",
        "compressionEnabled": False,
        "securityHeaders": {
            "hasHTTPS": False,
            "hasHSTS": False,
            "hasCSP": False,
            "hasXFrameOptions": False,
        },
        "cacheHeaders": {
            "hasCacheControl": False,
            "hasETag": False,
            "hasLastModified": False,
        },
        "database": None,
    }


def offline_profile(url: str, rng: np.random.Generator) -> Dict[str, Any]:
    """Backend profile guessed from the URL alone, used when probing is disabled."""
    https = urlparse(url).scheme == "https"
    return {
        "serverTechnology": "Unknown",
        "responseTime": float(rng.integers(80, 600)),
        "httpVersion": "HTTP/2" if https else "HTTP/1.1",
        "compressionEnabled": True,
        "securityHeaders": {
            "hasHTTPS": https,
            "hasHSTS": https,
            "hasCSP": False,
            "hasXFrameOptions": True,
        },
        "cacheHeaders": {
            "hasCacheControl": True,
            "hasETag": True,
            "hasLastModified": False,
        },
        "database": None,
    }


def probe_backend(url: str, *, timeout: float = 10.0, rng: Optional[np.random.Generator] = None,
                  session: Optional[requests.Session] = None) -> Dict[str, Any]:
    """HEAD the target and derive server, security and cache characteristics."""
    rng = rng if rng is not None else _make_rng()
    http = session or requests
    started = time.monotonic()
    try:
        resp = http.head(
            url,
            headers={"User-Agent": USER_AGENT},
            timeout=timeout,
            allow_redirects=True,
        )
    except requests.RequestException as e:
        logger.warning("backend probe failed for %s: %s", url, e)
        return inaccessible_profile()

    response_time = round((time.monotonic() - started) * 1000, 1)
    headers = resp.headers
    final_url = resp.url or url
    encoding = (headers.get("content-encoding") or "").lower()
    technology = _detect_server_technology(headers.get("server", ""), headers.get("x-powered-by", ""))

    return {
        "serverTechnology": technology,
        "responseTime": response_time,
        "serverLocation": _detect_server_location(headers),
        "httpVersion": "HTTP/2" if final_url.startswith("https://") else "HTTP/1.1",
        "compressionEnabled": any(enc in encoding for enc in ("gzip", "br", "deflate")),
        "securityHeaders": {
            "hasHTTPS": final_url.startswith("https://"),
            "hasHSTS": "strict-transport-security" in headers,
            "hasCSP": "content-security-policy" in headers,
            "hasXFrameOptions": "x-frame-options" in headers,
        },
        "cacheHeaders": {
            "hasCacheControl": "cache-control" in headers,
            "hasETag": "etag" in headers,
            "hasLastModified": "last-modified" in headers,
        },
        "database": _simulated_database(rng) if "Ruby" in technology else None,
    }


# ---------------------------
# Scores, metrics, recommendations
# ---------------------------

def _backend_bonus(response_time: float) -> int:
    if response_time < 200:
        return 10
    if response_time < 500:
        return 5
    if response_time > 1000:
        return -15
    return 0


def compute_scores(backend: Dict[str, Any], rng: np.random.Generator) -> Dict[str, int]:
    base = int(rng.integers(60, 100))

    def variation() -> int:
        return int(rng.integers(-10, 10))

    https_adj = 10 if backend["securityHeaders"]["hasHTTPS"] else -10
    cache_adj = 5 if backend["cacheHeaders"]["hasCacheControl"] else -5

    return {
        "performanceScore": _clamp_score(base + variation() + _backend_bonus(backend["responseTime"])),
        "accessibilityScore": _clamp_score(base + variation()),
        "bestPracticesScore": _clamp_score(base + variation() + https_adj),
        "seoScore": _clamp_score(base + variation() + cache_adj),
    }


def compute_metrics(performance_score: int, response_time: float) -> Dict[str, float]:
    factor = (100 - performance_score) / 100
    metrics = {}
    for name, (base, add_server) in _METRIC_BASES.items():
        value = base * (1 + factor * 2)
        if add_server:
            value += response_time
        metrics[name] = round(value, 3)
    return metrics


def build_recommendations(performance_score: int, backend: Dict[str, Any]) -> list:
    recs = []
    response_time = backend["responseTime"]

    if performance_score < 80:
        recs.append({
            "id": "optimize-images",
            "title": "Optimize images",
            "description": "Serve properly sized images to save mobile data and improve load time.",
            "impact": "high",
            "category": "performance",
            "potentialSavings": "1.2 MB",
        })
    if response_time > 500:
        recs.append({
            "id": "improve-server-response",
            "title": "Reduce server response time",
            "description": "The server takes too long to respond. Review database queries and server configuration.",
            "impact": "high",
            "category": "backend",
            "potentialSavings": f"{round(response_time - 200)}ms",
        })
    if not backend["compressionEnabled"]:
        recs.append({
            "id": "enable-compression",
            "title": "Enable text compression",
            "description": "Text resources should be served with gzip, deflate or brotli to minimize network bytes.",
            "impact": "medium",
            "category": "backend",
            "potentialSavings": "180 KB",
        })
    if not backend["securityHeaders"]["hasHTTPS"]:
        recs.append({
            "id": "enable-https",
            "title": "Enable HTTPS",
            "description": "Serve the site over HTTPS to improve security and SEO.",
            "impact": "high",
            "category": "security",
            "potentialSavings": "SEO boost",
        })
    if not backend["cacheHeaders"]["hasCacheControl"]:
        recs.append({
            "id": "implement-caching",
            "title": "Implement caching",
            "description": "Send cache headers so repeat visits avoid redundant network requests.",
            "impact": "medium",
            "category": "backend",
            "potentialSavings": "500ms",
        })
    database = backend.get("database") or {}
    if database.get("slowQueries", 0) > 5:
        recs.append({
            "id": "optimize-database",
            "title": "Optimize database",
            "description": "Slow database queries were detected. Consider adding indexes or rewriting the queries.",
            "impact": "high",
            "category": "database",
            "potentialSavings": f"{database.get('queryTime', 0)}ms",
        })
    return recs


def build_timeline(points: int = 10, step_ms: int = 300) -> list:
    return [
        {"time": i * step_ms, "progress": round(min(100.0, ((i / points) ** 0.7) * 100), 2)}
        for i in range(points + 1)
    ]


def analyze_website(
    url: str,
    device: str = "desktop",
    *,
    delay: float = 0.0,
    rng: Optional[np.random.Generator] = None,
    probe: Optional[Callable[[str], Dict[str, Any]]] = None,
    failure_rate: float = 0.0,
) -> Dict[str, Any]:
    """
    Run the simulated audit and return the result payload stored on a
    completed job. ``probe`` defaults to ``probe_backend``.
    """
    rng = rng if rng is not None else _make_rng()

    if delay:
        time.sleep(delay)

    if failure_rate and rng.random() < failure_rate:
        raise SimulatedAnalysisFailure(f"Simulated audit failure for {url}")

    backend = probe(url) if probe is not None else probe_backend(url, rng=rng)
    scores = compute_scores(backend, rng)
    metrics = compute_metrics(scores["performanceScore"], backend["responseTime"])

    resource_details = {
        "pageSize": int(rng.integers(1_000_000, 4_000_000)),   # bytes
        "requestCount": int(rng.integers(20, 70)),
        "loadTime": metrics["largestContentfulPaint"],          # ms
    }

    return {
        "url": url,
        "device": device,
        **scores,
        "metrics": metrics,
        "resourceDetails": resource_details,
        "backendAnalysis": backend,
        "recommendations": build_recommendations(scores["performanceScore"], backend),
        "timelineData": build_timeline(),
    }


def analyzer_from_config(config) -> Callable[[str, str], Dict[str, Any]]:
    """Bind analyze_website to the app settings (delay, probing, seed, failure rate)."""
    seed = config.get("ANALYSIS_RANDOM_SEED")
    probe_enabled = config.get("ANALYSIS_PROBE_BACKEND", True)
    timeout = config.get("ANALYSIS_PROBE_TIMEOUT", 10.0)

    def _run(url: str, device: str) -> Dict[str, Any]:
        rng = _make_rng(seed)
        if probe_enabled:
            probe = lambda u: probe_backend(u, timeout=timeout, rng=rng)  # noqa: E731
        else:
            probe = lambda u: offline_profile(u, rng)  # noqa: E731
        return analyze_website(
            url,
            device,
            delay=config.get("ANALYSIS_DELAY_SECONDS", 0.0),
            rng=rng,
            probe=probe,
            failure_rate=config.get("ANALYSIS_FAILURE_RATE", 0.0),
        )

    return _run
