# Overview: Flask API routes for read-only business statistics.

"""
Statistics routes.

Revenue figures count active orders only. Date filters accept start_date and
end_date (YYYY-MM-DD, Vietnam local, inclusive) or a `period` preset
(day | week | month | quarter | year).
"""

from flask import Blueprint, request

from ..services import statistics_service
from ..validation import Period, parse_limit_arg
from ..decorators import require_auth

statistics_bp = Blueprint("statistics", __name__, url_prefix="/api/statistics")


@statistics_bp.get("/overview")
@require_auth
def overview_route():
    return statistics_service.overview(Period.from_args(request.args))


@statistics_bp.get("/dashboard")
@require_auth
def dashboard_route():
    return statistics_service.dashboard(Period.from_args(request.args))


@statistics_bp.get("/comparison")
@require_auth
def comparison_route():
    """Without dates: this Vietnam calendar month vs the previous one."""
    period = Period.from_args(request.args)
    return statistics_service.period_comparison(period.start_date, period.end_date)


@statistics_bp.get("/revenue")
@require_auth
def revenue_route():
    """Query params: group_by (month | quarter | year), year."""
    grouping = request.args.get("group_by") or "month"
    year = request.args.get("year", type=int)
    return {
        "group_by": grouping,
        "rows": statistics_service.revenue_by_period(grouping, year),
    }


@statistics_bp.get("/top-customers")
@require_auth
def top_customers_route():
    limit = parse_limit_arg(request.args, default=10)
    return {"items": statistics_service.top_customers(limit, Period.from_args(request.args))}


@statistics_bp.get("/top-agents")
@require_auth
def top_agents_route():
    limit = parse_limit_arg(request.args, default=10)
    return {"items": statistics_service.top_agents(limit, Period.from_args(request.args))}


@statistics_bp.get("/top-products")
@require_auth
def top_products_route():
    limit = parse_limit_arg(request.args, default=10)
    return {"items": statistics_service.top_products(limit, Period.from_args(request.args))}


@statistics_bp.get("/debt-report")
@require_auth
def debt_report_route():
    return statistics_service.debt_report()
