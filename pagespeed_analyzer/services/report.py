# pagespeed_analyzer/services/report.py
"""
Integrated report: classifies a completed job's frontend metrics and
backend findings and derives issues, bottlenecks and a priority list.
"""
from typing import Any, Dict, List

from pagespeed_analyzer.errors import JobStateError
from pagespeed_analyzer.models.job import AnalysisJob, JobStatus

SCORE_KEYS = ("performanceScore", "accessibilityScore", "bestPracticesScore", "seoScore")

# metric -> (good below, needs_improvement below)
VITALS_BANDS = {
    "fcp": ("firstContentfulPaint", 1800, 3000, "Time until the first content is painted"),
    "lcp": ("largestContentfulPaint", 2500, 4000, "Time until the main element is rendered"),
    "tbt": ("totalBlockingTime", 200, 600, "Total time the main thread blocks input"),
    "cls": ("cumulativeLayoutShift", 0.1, 0.25, "Visual stability while loading"),
}

SECURITY_WEIGHTS = {
    "hasHTTPS": ("HTTPS", 40),
    "hasHSTS": ("HSTS", 25),
    "hasCSP": ("CSP", 20),
    "hasXFrameOptions": ("X-Frame-Options", 15),
}


def _band(value: float, good: float, fair: float, labels=("good", "needs_improvement", "poor")) -> str:
    if value < good:
        return labels[0]
    if value < fair:
        return labels[1]
    return labels[2]


def overall_score(result: Dict[str, Any]) -> int:
    return round(sum(result[k] for k in SCORE_KEYS) / len(SCORE_KEYS))


def overall_health(result: Dict[str, Any]) -> str:
    avg = sum(result[k] for k in SCORE_KEYS) / len(SCORE_KEYS)
    if avg >= 90:
        return "excellent"
    if avg >= 75:
        return "good"
    if avg >= 50:
        return "needs_improvement"
    return "poor"


def assess_security(security: Dict[str, bool]) -> Dict[str, Any]:
    score = sum(weight for key, (_, weight) in SECURITY_WEIGHTS.items() if security.get(key))
    if score >= 80:
        level = "strong"
    elif score >= 60:
        level = "adequate"
    elif score >= 40:
        level = "basic"
    else:
        level = "weak"
    return {
        "score": score,
        "level": level,
        "missing_protections": [label for key, (label, _) in SECURITY_WEIGHTS.items() if not security.get(key)],
    }


def critical_issues(result: Dict[str, Any]) -> List[Dict[str, str]]:
    backend, metrics = result["backendAnalysis"], result["metrics"]
    issues = []
    if not backend["securityHeaders"]["hasHTTPS"]:
        issues.append({"type": "security", "severity": "critical", "issue": "HTTPS missing",
                       "impact": "Unencrypted traffic and SEO penalty"})
    if metrics["largestContentfulPaint"] > 4000:
        issues.append({"type": "performance", "severity": "critical", "issue": "Very slow LCP",
                       "impact": "Poor user experience"})
    if backend["responseTime"] > 1000:
        issues.append({"type": "performance", "severity": "high", "issue": "Slow server",
                       "impact": "Delays across the whole experience"})
    return issues


def optimization_opportunities(result: Dict[str, Any]) -> List[Dict[str, str]]:
    backend, resources = result["backendAnalysis"], result["resourceDetails"]
    out = []
    if not backend["compressionEnabled"]:
        out.append({"type": "compression", "potential_savings": "20-70% smaller transfers",
                    "effort": "low", "description": "Enable gzip/brotli compression"})
    if resources["requestCount"] > 100:
        out.append({"type": "resource_optimization", "potential_savings": "30-50% fewer requests",
                    "effort": "medium", "description": "Bundle and minify resources"})
    if not backend["cacheHeaders"]["hasCacheControl"]:
        out.append({"type": "caching", "potential_savings": "50-90% faster repeat loads",
                    "effort": "low", "description": "Configure cache headers"})
    return out


def correlation(result: Dict[str, Any]) -> Dict[str, Any]:
    server_time = result["backendAnalysis"]["responseTime"]
    fcp = result["metrics"]["firstContentfulPaint"] or 1
    impact = min(server_time / fcp * 100, 100)
    if impact > 50:
        verdict = "The server is the main bottleneck"
    elif impact > 25:
        verdict = "The server contributes significantly to load time"
    else:
        verdict = "Performance is mostly bound by the frontend"
    return {"server_impact_percentage": round(impact, 2), "analysis": verdict}


def bottlenecks(result: Dict[str, Any]) -> List[Dict[str, str]]:
    out = []
    if result["backendAnalysis"]["responseTime"] > 500:
        out.append({"type": "server_response", "severity": "high", "description": "High server response time"})
    if result["resourceDetails"]["pageSize"] > 3_000_000:
        out.append({"type": "page_size", "severity": "medium", "description": "Excessive page weight"})
    if result["metrics"]["totalBlockingTime"] > 300:
        out.append({"type": "javascript_blocking", "severity": "high", "description": "JavaScript blocks interaction"})
    return out


def prioritized_optimizations(result: Dict[str, Any]) -> List[Dict[str, Any]]:
    backend = result["backendAnalysis"]
    out = []
    if backend["responseTime"] > 1000:
        out.append({"priority": 1, "action": "Optimize server performance", "impact": "high", "effort": "high"})
    if not backend["compressionEnabled"]:
        out.append({"priority": 2, "action": "Enable text compression", "impact": "medium", "effort": "low"})
    if not backend["securityHeaders"]["hasHSTS"]:
        out.append({"priority": 3, "action": "Add HSTS", "impact": "low", "effort": "low"})
    return sorted(out, key=lambda p: p["priority"])


def integrated_recommendations(result: Dict[str, Any]) -> List[Dict[str, Any]]:
    backend, metrics = result["backendAnalysis"], result["metrics"]
    out = []
    if backend["responseTime"] > 500:
        out.append({
            "category": "server",
            "title": "Reduce server response time",
            "description": f"The server answers in {backend['responseTime']}ms. Tune database queries, "
                           "add an application cache and consider a CDN.",
            "impact": "high",
            "effort": "medium",
            "technical_details": {
                "current_response_time": backend["responseTime"],
                "target_response_time": 200,
                "suggested_technologies": ["Redis cache", "Database indexing", "CDN"],
            },
        })
    if metrics["largestContentfulPaint"] > 2500:
        out.append({
            "category": "frontend",
            "title": "Improve Largest Contentful Paint",
            "description": f"The main element takes {metrics['largestContentfulPaint']}ms to render. "
                           "Optimize images, lazy-load below the fold and prioritize critical resources.",
            "impact": "high",
            "effort": "medium",
            "technical_details": {
                "current_lcp": metrics["largestContentfulPaint"],
                "target_lcp": 2500,
                "suggested_techniques": ["Image optimization", "Resource prioritization", "Lazy loading"],
            },
        })
    if not backend["securityHeaders"]["hasHTTPS"]:
        out.append({
            "category": "security",
            "title": "Serve over HTTPS",
            "description": "The site does not use HTTPS, which hurts security, user trust and search ranking.",
            "impact": "critical",
            "effort": "low",
            "technical_details": {
                "implementation": "SSL certificate installation",
                "redirect_http": True,
                "hsts_header": True,
            },
        })
    return out


def build_integrated_report(job: AnalysisJob) -> Dict[str, Any]:
    if job.status != JobStatus.COMPLETED or not job.result:
        raise JobStateError(
            "Analysis not completed yet", details={"job_id": job.id, "status": job.status}
        )

    result = job.result
    metrics = result["metrics"]
    resources = result["resourceDetails"]
    backend = result["backendAnalysis"]

    core_web_vitals = {}
    for key, (metric, good, fair, description) in VITALS_BANDS.items():
        core_web_vitals[key] = {
            "value": metrics[metric],
            "status": _band(metrics[metric], good, fair),
            "description": description,
        }

    efficiency = ("excellent", "good", "needs_improvement")
    frontend_analysis = {
        "core_web_vitals": core_web_vitals,
        "resource_efficiency": {
            "page_size": {
                "value": resources["pageSize"],
                "efficiency": _band(resources["pageSize"], 1_000_000, 3_000_000, efficiency),
                "description": "Total page weight in bytes",
            },
            "request_count": {
                "value": resources["requestCount"],
                "efficiency": _band(resources["requestCount"], 50, 100, efficiency),
                "description": "Total number of HTTP requests",
            },
        },
    }

    security = backend["securityHeaders"]
    cache = backend["cacheHeaders"]
    backend_infrastructure = {
        "server_performance": {
            "response_time": {
                "value": backend["responseTime"],
                "status": _band(backend["responseTime"], 200, 500, ("excellent", "good", "slow")),
                "description": "Server response time in milliseconds",
            },
            "technology_stack": {
                "server": backend["serverTechnology"],
                "http_version": backend["httpVersion"],
                "compression": "enabled" if backend["compressionEnabled"] else "disabled",
            },
        },
        "security_headers": {
            "https_status": {"enabled": security["hasHTTPS"], "impact": "critical"},
            "hsts_status": {"enabled": security["hasHSTS"], "impact": "high"},
            "csp_status": {"enabled": security["hasCSP"], "impact": "medium"},
            "frame_protection": {"enabled": security["hasXFrameOptions"], "impact": "medium"},
        },
        "caching_strategy": {
            "cache_control": {"enabled": cache["hasCacheControl"], "impact": "high"},
            "etag": {"enabled": cache["hasETag"], "impact": "medium"},
            "last_modified": {"enabled": cache["hasLastModified"], "impact": "low"},
        },
    }

    health = overall_health(result)
    return {
        "summary": {
            "job_id": job.id,
            "url": job.url,
            "analyzed_at": job.completed_at.replace(microsecond=0).isoformat() + "Z" if job.completed_at else None,
            "overall_score": overall_score(result),
            "performance_level": health,
        },
        "frontend_analysis": frontend_analysis,
        "backend_infrastructure": backend_infrastructure,
        "performance_insights": {
            "overall_health": health,
            "critical_issues": critical_issues(result),
            "optimization_opportunities": optimization_opportunities(result),
            "security_assessment": assess_security(security),
        },
        "correlation_analysis": {
            "frontend_backend_correlation": correlation(result),
            "bottleneck_identification": bottlenecks(result),
            "optimization_priority": prioritized_optimizations(result),
        },
        "integrated_recommendations": integrated_recommendations(result),
        "technical_details": {
            "device_tested": job.device,
        },
    }
