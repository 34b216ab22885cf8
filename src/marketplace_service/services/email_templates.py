"""Email subjects and HTML bodies for lifecycle notices."""

from __future__ import annotations

from html import escape


def _link(frontend_url: str, label: str) -> str:
    return f'<a href="{escape(frontend_url)}">{label}</a>'


def _amount(amount: float) -> str:
    return f"${amount:,.2f}"


def new_bid(title: str, amount: float, helper_name: str, frontend_url: str) -> tuple[str, str]:
    safe_title = escape(title)
    html = (
        "<h1>New Bid Received</h1>"
        f"<p><strong>{escape(helper_name)}</strong> has placed a bid of "
        f"<strong>{_amount(amount)}</strong> on your task "
        f'"<strong>{safe_title}</strong>".</p>'
        "<p>Log in to review and accept the bid.</p>"
        f"{_link(frontend_url, 'View Bids')}"
    )
    return f'New Bid on "{title}"', html


def bid_accepted(title: str, amount: float, frontend_url: str) -> tuple[str, str]:
    safe_title = escape(title)
    html = (
        "<h1>Congratulations!</h1>"
        f"<p>Your bid of <strong>{_amount(amount)}</strong> for "
        f'"<strong>{safe_title}</strong>" has been accepted!</p>'
        "<p>Please contact the requester to arrange the details.</p>"
        f"{_link(frontend_url, 'View Task')}"
    )
    return f'Bid Accepted: "{title}"', html


def task_started(title: str, helper_name: str, frontend_url: str) -> tuple[str, str]:
    safe_title = escape(title)
    html = (
        "<h1>Work has begun!</h1>"
        f"<p><strong>{escape(helper_name)}</strong> has started working on your task "
        f'"<strong>{safe_title}</strong>".</p>'
        f"{_link(frontend_url, 'View Task')}"
    )
    return f'Task Started: "{title}"', html


def completion_requested(title: str, helper_name: str, frontend_url: str) -> tuple[str, str]:
    safe_title = escape(title)
    html = (
        "<h1>Task Completed?</h1>"
        f'<p><strong>{escape(helper_name)}</strong> has marked "<strong>{safe_title}</strong>" '
        "as complete.</p>"
        "<p>Please review the work and approve or reject the completion request.</p>"
        f"{_link(frontend_url, 'Review Work')}"
    )
    return f'Completion Requested: "{title}"', html


def completion_approved(title: str, frontend_url: str) -> tuple[str, str]:
    safe_title = escape(title)
    html = (
        "<h1>Great Job!</h1>"
        f'<p>Your work on "<strong>{safe_title}</strong>" has been approved by the requester.</p>'
        f"{_link(frontend_url, 'View Details')}"
    )
    return f'Work Approved: "{title}"', html


def completion_rejected(title: str, frontend_url: str) -> tuple[str, str]:
    safe_title = escape(title)
    html = (
        "<h1>Action Required</h1>"
        f'<p>Your completion request for "<strong>{safe_title}</strong>" was rejected '
        "by the requester.</p>"
        "<p>Check the task details and make sure all requirements are met before "
        "requesting completion again.</p>"
        f"{_link(frontend_url, 'View Task')}"
    )
    return f'Completion Rejected: "{title}"', html


def task_reopened(title: str, frontend_url: str) -> tuple[str, str]:
    safe_title = escape(title)
    html = (
        "<h1>Task Reopened</h1>"
        f'<p>The task "<strong>{safe_title}</strong>" has been reopened by the requester.</p>'
        "<p>The previous contract has been cancelled. You may need to review the task "
        "or bid again.</p>"
        f"{_link(frontend_url, 'View Task')}"
    )
    return f'Task Reopened: "{title}"', html
