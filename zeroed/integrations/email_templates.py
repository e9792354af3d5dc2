"""HTML email templates. Each builder returns (subject, html)."""

from __future__ import annotations

from html import escape

_BASE = """\
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Bruh</title>
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;
           line-height: 1.6; color: #1a1a1a; margin: 0; padding: 0; background-color: #f5f5f5; }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 40px 20px; }}
    .card {{ background: white; border-radius: 12px; padding: 32px; }}
    .logo {{ font-size: 24px; font-weight: 700; color: #000; text-decoration: none;
            margin-bottom: 24px; display: block; }}
    .logo span {{ color: #FF6B00; }}
    h1 {{ font-size: 24px; font-weight: 600; margin: 0 0 16px 0; }}
    p {{ margin: 0 0 16px 0; color: #4b5563; }}
    .button {{ display: inline-block; background: #FF6B00; color: white !important;
              text-decoration: none; padding: 12px 24px; border-radius: 8px; margin: 16px 0; }}
    .highlight {{ background: #f9fafb; border-radius: 8px; padding: 16px; margin: 16px 0; }}
    .divider {{ border: none; border-top: 1px solid #e5e7eb; margin: 24px 0; }}
    .muted {{ font-size: 14px; color: #9ca3af; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="card">
      <a class="logo" href="{app_url}">bruh<span>.</span></a>
      {content}
    </div>
  </div>
</body>
</html>
"""

_ROLE_ABILITIES = {
    "admin": ["Manage team settings and members", "Create and manage projects", "Assign and complete tasks"],
    "member": ["Create and manage projects", "Create and complete tasks", "Comment on tasks"],
    "viewer": ["View team projects and tasks", "Comment on tasks"],
}


def _base(content: str, app_url: str) -> str:
    return _BASE.format(content=content, app_url=escape(app_url))


def time_greeting(hour: int) -> str:
    if hour < 12:
        return "Good morning"
    if hour < 17:
        return "Good afternoon"
    return "Good evening"


def team_invite_email(
    team_name: str, inviter_name: str, role: str, invite_link: str, app_url: str,
) -> tuple[str, str]:
    abilities = "".join(
        f"<li>{escape(a)}</li>" for a in _ROLE_ABILITIES.get(role, _ROLE_ABILITIES["viewer"])
    )
    content = f"""
      <h1>Join {escape(team_name)}</h1>
      <p>{escape(inviter_name)} has invited you to join <strong>{escape(team_name)}</strong>
         as a <strong>{escape(role)}</strong>.</p>
      <div class="highlight">
        <p style="margin: 0;"><strong>What you'll be able to do:</strong></p>
        <ul style="margin: 8px 0 0 0; padding-left: 20px;">{abilities}</ul>
      </div>
      <a href="{escape(invite_link)}" class="button">Accept Invitation</a>
      <hr class="divider">
      <p class="muted">This invitation expires in 7 days. If you weren't expecting this email,
         you can safely ignore it.</p>
    """
    return f"You've been invited to join {team_name} on Bruh", _base(content, app_url)


def welcome_email(user_name: str | None, app_url: str) -> tuple[str, str]:
    name = f", {escape(user_name)}" if user_name else ""
    content = f"""
      <h1>Welcome{name}!</h1>
      <p>Thanks for joining Bruh. We're excited to help you get focused and accomplish more.</p>
      <a href="{escape(app_url)}/today" class="button">Get Started</a>
    """
    return "Welcome to Bruh!", _base(content, app_url)


def task_assigned_email(
    task_title: str, project_name: str, assigner_name: str, task_link: str,
    app_url: str, due_date: str | None = None,
) -> tuple[str, str]:
    due = f'<p style="margin: 8px 0 0 0;">Due: {escape(due_date)}</p>' if due_date else ""
    content = f"""
      <h1>New Task Assigned</h1>
      <p>{escape(assigner_name)} assigned you a task in <strong>{escape(project_name)}</strong>.</p>
      <div class="highlight">
        <p style="margin: 0; font-weight: 600;">{escape(task_title)}</p>{due}
      </div>
      <a href="{escape(task_link)}" class="button">View Task</a>
    """
    return f"New task assigned: {task_title}", _base(content, app_url)


def daily_digest_email(
    user_name: str | None,
    today_tasks: list[dict],
    overdue_tasks: list[dict],
    completed_yesterday: int,
    app_url: str,
    hour: int = 8,
) -> tuple[str, str]:
    """today_tasks: [{title, time?}], overdue_tasks: [{title, days_overdue}]."""
    greeting = time_greeting(hour)
    name = f", {user_name}" if user_name else ""

    sections = []
    if completed_yesterday > 0:
        plural = "" if completed_yesterday == 1 else "s"
        sections.append(
            f'<div class="highlight"><p style="margin: 0;">You completed '
            f"<strong>{completed_yesterday} task{plural}</strong> yesterday!</p></div>"
        )
    if overdue_tasks:
        items = "".join(
            f"<li>{escape(t['title'])} ({t['days_overdue']}d)</li>" for t in overdue_tasks[:5]
        )
        sections.append(
            f'<div class="highlight"><p style="margin: 0 0 8px 0;"><strong>Overdue '
            f"({len(overdue_tasks)})</strong></p><ul>{items}</ul></div>"
        )
    if today_tasks:
        items = "".join(
            f"<li>{escape(t['title'])}{' at ' + escape(t['time']) if t.get('time') else ''}</li>"
            for t in today_tasks[:8]
        )
        if len(today_tasks) > 8:
            items += f"<li>...and {len(today_tasks) - 8} more</li>"
        sections.append(
            f'<div class="highlight"><p style="margin: 0 0 8px 0;"><strong>Today\'s Tasks '
            f"({len(today_tasks)})</strong></p><ul>{items}</ul></div>"
        )
    else:
        sections.append('<div class="highlight"><p style="margin: 0;">No tasks scheduled for today!</p></div>')

    content = f"""
      <h1>{greeting}{escape(name)}!</h1>
      <p>Here's what's on your plate today.</p>
      {''.join(sections)}
      <a href="{escape(app_url)}/today" class="button">Open Bruh</a>
    """
    return f"{greeting}{name} - Your Bruh Daily Digest", _base(content, app_url)


def weekly_summary_email(
    user_name: str | None,
    tasks_completed: int,
    focus_minutes: int,
    streak_days: int,
    app_url: str,
    best_day: str | None = None,
) -> tuple[str, str]:
    focus_hours = round(focus_minutes / 60)
    name = f", {escape(user_name)}" if user_name else ""
    best = f"<p>Your most productive day: <strong>{escape(best_day)}</strong></p>" if best_day else ""
    content = f"""
      <h1>Your Week in Review</h1>
      <p>Here's how you did this week{name}.</p>
      <div class="highlight"><p style="margin: 0;"><strong>{tasks_completed}</strong> tasks done</p></div>
      <div class="highlight"><p style="margin: 0;"><strong>{focus_hours}h</strong> focus time</p></div>
      <div class="highlight"><p style="margin: 0;"><strong>{streak_days}</strong> day streak</p></div>
      {best}
      <a href="{escape(app_url)}/stats" class="button">View Full Stats</a>
      <hr class="divider">
      <p class="muted">Keep up the momentum!</p>
    """
    return "Your Weekly Bruh Summary", _base(content, app_url)


def admin_email(message: str, app_url: str) -> str:
    content = f"""
      <div style="white-space: pre-wrap; line-height: 1.8;">{escape(message)}</div>
      <hr class="divider">
      <p class="muted">This email was sent by a Bruh administrator.</p>
    """
    return _base(content, app_url)
