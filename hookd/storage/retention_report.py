"""
Daily stats report for the retention job.

Renders the pre-run usage snapshot and the cleanup counts into an HTML email
with a plain-text alternative, and hands it to a notification sink.
"""

from datetime import datetime, timezone
from typing import List, Optional

import structlog
from jinja2 import Template

from .interfaces import NotificationSink
from .retention_models import MIB, AccountUsage, ReportContent, RetentionPolicy
from .retention_usage import UsageAggregator

logger = structlog.get_logger(__name__)

_SIZE_UNITS = ['B', 'KB', 'MB', 'GB']

_HTML_TEMPLATE = Template("""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <style>
      body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; background: #f5f5f5; padding: 20px; }
      .container { max-width: 800px; margin: 0 auto; background: white; border-radius: 8px; overflow: hidden; box-shadow: 0 2px 8px rgba(0,0,0,0.1); }
      .header { background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); padding: 30px; text-align: center; }
      .header h1 { color: white; margin: 0; font-size: 24px; }
      .content { padding: 30px; }
      .stat-grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(180px, 1fr)); gap: 15px; margin: 20px 0; }
      .stat { background: #f8f9fa; padding: 15px; border-radius: 6px; }
      .stat-label { color: #666; font-size: 12px; text-transform: uppercase; letter-spacing: 0.5px; }
      .stat-value { color: #333; font-size: 24px; font-weight: bold; margin-top: 5px; }
      .table-container { overflow-x: auto; margin: 20px 0; }
      table { width: 100%; border-collapse: collapse; }
      th { background: #f8f9fa; padding: 12px; text-align: left; font-weight: 600; border-bottom: 2px solid #e0e0e0; }
      td { padding: 12px; border-bottom: 1px solid #e0e0e0; }
      .footer { text-align: center; padding: 20px; color: #666; font-size: 12px; background: #f8f9fa; }
      .section-title { font-size: 18px; font-weight: 600; margin-top: 30px; margin-bottom: 15px; color: #333; }
    </style>
  </head>
  <body>
    <div class="container">
      <div class="header">
        <h1>📊 Daily Webhook System Report</h1>
      </div>
      <div class="content">
        <h2 class="section-title">System Overview</h2>
        <div class="stat-grid">
          <div class="stat">
            <div class="stat-label">Total Users</div>
            <div class="stat-value">{{ totals.account_count }}</div>
          </div>
          <div class="stat">
            <div class="stat-label">Total Webhooks</div>
            <div class="stat-value">{{ totals.endpoint_count }}</div>
          </div>
          <div class="stat">
            <div class="stat-label">Total Records</div>
            <div class="stat-value">{{ totals.record_count }}</div>
          </div>
          <div class="stat">
            <div class="stat-label">Total Storage</div>
            <div class="stat-value">{{ format_bytes(totals.total_bytes) }}</div>
          </div>
        </div>
        {% if deleted_by_age > 0 or deleted_by_quota > 0 %}
        <div style="margin: 20px 0; padding: 15px; background: #fff3cd; border-left: 4px solid #ffc107; border-radius: 4px;">
          {% if deleted_by_age > 0 %}
          <div><strong>🧹 Time-based Cleanup:</strong> Deleted {{ deleted_by_age }} records older than {{ cutoff_date }}</div>
          {% endif %}
          {% if deleted_by_quota > 0 %}
          <div style="margin-top: {{ '8px' if deleted_by_age > 0 else '0' }}"><strong>📦 Size-based Cleanup:</strong> Deleted {{ deleted_by_quota }} records to enforce {{ limit }} per-user limit</div>
          {% endif %}
          <div style="margin-top: 8px; font-weight: bold;">Total Deleted: {{ deleted_by_age + deleted_by_quota }} records</div>
        </div>
        {% endif %}
        <h2 class="section-title">User Statistics</h2>
        <div class="table-container">
          <table>
            <thead>
              <tr>
                <th>User Email</th>
                <th style="text-align: center;">Webhooks</th>
                <th style="text-align: center;">Records</th>
                <th style="text-align: right;">Storage</th>
              </tr>
            </thead>
            <tbody>
              {% for usage in accounts %}
              <tr>
                <td>{{ usage.identifier }}</td>
                <td style="text-align: center;">{{ usage.endpoint_count }}</td>
                <td style="text-align: center;">{{ usage.record_count }}</td>
                <td style="text-align: right;">{{ format_bytes(usage.total_bytes) }}</td>
              </tr>
              {% endfor %}
            </tbody>
          </table>
        </div>

        <div style="margin-top: 20px; padding: 15px; background: #e3f2fd; border-left: 4px solid #2196f3; border-radius: 4px;">
          <strong>ℹ️ Report Time:</strong> {{ report_time }} UTC
        </div>
      </div>
      <div class="footer">
        <p>This is an automated daily report from your Webhook System.</p>
        <p>Data older than {{ max_age }} is automatically cleaned up. Users exceeding {{ limit }} storage have their oldest requests removed.</p>
      </div>
    </div>
  </body>
</html>
""", autoescape=True)


def format_bytes(num_bytes: int) -> str:
    """Format a byte count using 1024 steps, e.g. '1.50 KB'."""
    if num_bytes <= 0:
        return '0 B'
    value = float(num_bytes)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{value:.2f} {_SIZE_UNITS[unit]}"


def _format_limit(max_bytes: int) -> str:
    if max_bytes % MIB == 0:
        return f"{max_bytes // MIB}MB"
    return format_bytes(max_bytes)


def _format_age(months: int) -> str:
    return "1 month" if months == 1 else f"{months} months"


class RetentionReport:
    """Builds and dispatches the daily stats report."""

    def __init__(self, policy: RetentionPolicy):
        self.policy = policy

    def build(self,
              snapshot: List[AccountUsage],
              deleted_by_age: int,
              deleted_by_quota: int,
              cutoff: datetime,
              now: Optional[datetime] = None) -> ReportContent:
        """
        Render the report.

        Args:
            snapshot: Per-account usage taken before any deletion
            deleted_by_age: Records removed by the age purge
            deleted_by_quota: Records removed by quota enforcement
            cutoff: Age cutoff used by the purge
            now: Report time, defaults to the current UTC time
        """
        now = now or datetime.now(timezone.utc)
        totals = UsageAggregator.totals(snapshot)
        total_deleted = deleted_by_age + deleted_by_quota
        ranked = sorted(snapshot, key=lambda usage: usage.record_count, reverse=True)

        subject = (f"📊 Daily Webhook Stats | {totals.account_count} users | "
                   f"{totals.record_count} records | {total_deleted} deleted")

        body = _HTML_TEMPLATE.render(
            totals=totals,
            accounts=ranked,
            deleted_by_age=deleted_by_age,
            deleted_by_quota=deleted_by_quota,
            cutoff_date=cutoff.date().isoformat(),
            report_time=now.strftime('%Y-%m-%d %H:%M:%S'),
            max_age=_format_age(self.policy.max_age_months),
            limit=_format_limit(self.policy.max_account_bytes),
            format_bytes=format_bytes,
        )

        text = self._render_text(ranked, totals, deleted_by_age, deleted_by_quota, cutoff, now)
        return ReportContent(subject=subject, html=body, text=text)

    def _render_text(self, ranked, totals, deleted_by_age, deleted_by_quota, cutoff, now) -> str:
        lines = [
            "Daily Webhook System Report",
            "",
            "System Overview",
            f"  Total Users:    {totals.account_count}",
            f"  Total Webhooks: {totals.endpoint_count}",
            f"  Total Records:  {totals.record_count}",
            f"  Total Storage:  {format_bytes(totals.total_bytes)}",
            "",
        ]

        if deleted_by_age > 0 or deleted_by_quota > 0:
            lines.append("Cleanup")
            if deleted_by_age > 0:
                lines.append(f"  Time-based: deleted {deleted_by_age} records older than {cutoff.date().isoformat()}")
            if deleted_by_quota > 0:
                lines.append(f"  Size-based: deleted {deleted_by_quota} records to enforce "
                             f"{_format_limit(self.policy.max_account_bytes)} per-user limit")
            lines.append(f"  Total Deleted: {deleted_by_age + deleted_by_quota} records")
            lines.append("")

        lines.append("User Statistics")
        for usage in ranked:
            lines.append(f"  {usage.identifier}: {usage.endpoint_count} webhooks, "
                         f"{usage.record_count} records, {format_bytes(usage.total_bytes)}")
        lines.append("")
        lines.append(f"Report Time: {now.strftime('%Y-%m-%d %H:%M:%S')} UTC")
        return "\n".join(lines)

    async def dispatch(self,
                       content: ReportContent,
                       sink: Optional[NotificationSink],
                       recipient: Optional[str]) -> bool:
        """
        Hand the report to the notification sink.

        Delivery problems never propagate: a missing recipient or sink is
        skipped with a warning, and a failed send is logged.

        Returns:
            True if the sink accepted the report.
        """
        if not recipient:
            logger.warning("Admin email not configured, skipping daily stats email")
            return False
        if sink is None:
            logger.warning("No notification channel configured, skipping daily stats email",
                           recipient=recipient)
            return False

        try:
            sent = await sink.send(content.subject, content.html, content.text, recipient)
        except Exception as e:
            logger.warning("Failed to send daily stats email", recipient=recipient, error=str(e))
            return False

        if not sent:
            logger.warning("Notification channel rejected daily stats email", recipient=recipient)
            return False

        logger.info("Daily stats email sent", recipient=recipient)
        return True
