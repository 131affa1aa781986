"""
Booking e-mail templates
Inline-styled HTML; every user-supplied value is escaped before rendering.
"""

from html import escape
from typing import Optional

STYLES = {
    "container": "font-family: 'Helvetica Neue', Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;",
    "header": "color: #2563eb; font-size: 24px; margin-bottom: 24px;",
    "paragraph": "font-size: 16px; line-height: 1.6; margin-bottom: 16px; color: #333;",
    "highlight": "background: #f3f4f6; padding: 24px; border-radius: 8px; margin: 24px 0;",
    "cell_label": "padding: 8px 0; border-bottom: 1px solid #e5e7eb; width: 30%;",
    "cell": "padding: 8px 0; border-bottom: 1px solid #e5e7eb;",
    "button": "display: inline-block; background-color: #2563eb; color: white; padding: 12px 24px; "
              "text-decoration: none; border-radius: 6px; font-weight: bold;",
    "footer": "margin-top: 32px; padding-top: 24px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px;",
}


def _row(label: str, value: Optional[str], raw: bool = False) -> str:
    if not value:
        return ""
    rendered = value if raw else escape(value)
    return f"""
        <tr>
          <td style="{STYLES['cell_label']}"><strong>{label}</strong></td>
          <td style="{STYLES['cell']}">{rendered}</td>
        </tr>"""


def _meeting_link(meeting_url: Optional[str]) -> Optional[str]:
    if not meeting_url:
        return None
    safe_url = escape(meeting_url, quote=True)
    return f'<a href="{safe_url}" style="color: #2563eb;">{safe_url}</a>'


def booking_confirmation_template(context: dict) -> tuple[str, str]:
    """Subject and HTML body for the requester's confirmation."""
    business_name = escape(context["business_name"])
    meeting_url = context.get("meeting_url")
    subject = f"[{context['business_name']}] Your consultation is booked"

    meeting_button = ""
    if meeting_url:
        meeting_button = f"""
      <div style="text-align: center; margin: 32px 0;">
        <a href="{escape(meeting_url, quote=True)}" style="{STYLES['button']}">Join Google Meet</a>
      </div>"""

    html = f"""
    <div style="{STYLES['container']}">
      <h1 style="{STYLES['header']}">{business_name}</h1>
      <p style="{STYLES['paragraph']}">Dear {escape(context['name'])},</p>
      <p style="{STYLES['paragraph']}">
        Thank you for booking a free consultation. Your appointment is confirmed for the time below.
      </p>
      <div style="{STYLES['highlight']}">
        <table style="width: 100%; border-collapse: collapse;">
          {_row("Date", context["date_label"])}
          {_row("Time", f"{context['time_label']} ({context['duration_minutes']} minutes)")}
          {_row("Format", "Online (Google Meet)")}
          {_row("Join link", _meeting_link(meeting_url), raw=True)}
        </table>
      </div>{meeting_button}
      <p style="{STYLES['paragraph']}">
        If you can no longer attend, please let us know at
        <a href="mailto:{escape(context['support_email'], quote=True)}">{escape(context['support_email'])}</a>.
      </p>
      <div style="{STYLES['footer']}">{business_name}</div>
    </div>
    """
    return subject, html


def booking_admin_notice_template(context: dict) -> tuple[str, str]:
    """Subject and HTML body for the internal new-booking notice."""
    subject = f"[New booking] {context['name']} - {context['date_label']} {context['time_label']}"

    message_section = ""
    if context.get("message"):
        message_section = f"""
        <div style="margin-top: 16px; padding-top: 16px; border-top: 1px solid #e5e7eb;">
          <strong>Message:</strong>
          <p style="margin-top: 8px; white-space: pre-wrap;">{escape(context['message'])}</p>
        </div>"""

    html = f"""
    <div style="{STYLES['container']}">
      <h1 style="{STYLES['header']}">New consultation booking</h1>
      <div style="{STYLES['highlight']}">
        <table style="width: 100%; border-collapse: collapse;">
          {_row("Name", context["name"])}
          {_row("Email", context["email"])}
          {_row("Phone", context.get("phone"))}
          {_row("Company", context.get("company"))}
          {_row("When", f"{context['date_label']} {context['time_label']}")}
          {_row("Meet URL", _meeting_link(context.get("meeting_url")), raw=True)}
          {_row("Event ID", context.get("event_id"))}
        </table>{message_section}
      </div>
    </div>
    """
    return subject, html


TEMPLATES = {
    "booking_confirmation": booking_confirmation_template,
    "booking_admin_notice": booking_admin_notice_template,
}


def render(template_kind: str, context: dict) -> tuple[str, str]:
    try:
        template = TEMPLATES[template_kind]
    except KeyError as exc:
        raise ValueError(f"Unknown e-mail template: {template_kind}") from exc
    return template(context)
