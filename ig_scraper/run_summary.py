from __future__ import annotations

from typing import Any, Mapping

from .config_schema import AppConfig
from .runner import ScrapeResult


def build_run_summary(
    result: ScrapeResult,
    *,
    config: AppConfig,
    log_counts: Mapping[str, int] | None = None,
) -> dict[str, Any]:
    st = (result.status or "").strip() or "unknown"

    details: dict[str, Any] = {
        "strategy": config.fetch.strategy,
        "handled": int(result.handled),
        "records": int(result.records),
        "records_by_type": dict(result.records_by_type),
        "skipped": int(result.skipped),
        "fetch_failures": int(result.fetch_failures),
        "shape_mismatches": int(result.shape_mismatches),
        "errors": int(result.errors),
        "results_type": config.input.results_type,
        "results_limit": config.input.effective_results_limit,
    }
    if log_counts:
        details["warnings_logged"] = int(log_counts.get("WARN", 0))
        details["errors_logged"] = int(log_counts.get("ERROR", 0))

    recommendations: list[str] = []
    summary = (
        f"Run finished with status={st}: {result.records} records from "
        f"{result.handled} requests."
    )

    if st == "request_cap_reached":
        details["max_requests_per_crawl"] = int(config.crawl.max_requests_per_crawl)
        recommendations.append(
            "Increase crawl.max_requests_per_crawl; queued URLs were left unprocessed."
        )

    if result.fetch_failures:
        if config.fetch.strategy == "html":
            recommendations.append(
                "Pages often omit the embedded data blob; try fetch.strategy: api or browser."
            )
        elif config.fetch.strategy == "api":
            recommendations.append(
                "API calls were rejected; a logged-in session (csrftoken cookie) may be required."
            )
        else:
            recommendations.append(
                "Increase fetch.element_timeout_secs or provide fetch.storage_state for a logged-in browser."
            )

    if result.shape_mismatches:
        recommendations.append(
            "Payloads lacked expected root objects; the site layout may have changed."
        )

    if result.skipped and not result.records:
        recommendations.append(
            "No input URL matched a known shape; use profile, /p/, /reel/, /explore/tags/ or /explore/locations/ URLs."
        )

    if result.sink_dropped:
        details["sink_dropped"] = int(result.sink_dropped)
        recommendations.append("Some records could not be pushed to the dataset; check the sink token.")

    return {
        "status": st,
        "summary": summary,
        "details": details,
        "recommendations": recommendations,
    }


def format_run_summary(report: Mapping[str, Any]) -> str:
    status = str(report.get("status") or "").strip() or "unknown"
    summary = str(report.get("summary") or "").strip() or f"Run stopped ({status})."

    lines: list[str] = [summary]
    recs = report.get("recommendations")
    if isinstance(recs, list) and recs:
        lines.append("Recommendations:")
        for r in recs:
            t = str(r or "").strip()
            if t:
                lines.append(f"- {t}")

    return "\n".join(lines)
