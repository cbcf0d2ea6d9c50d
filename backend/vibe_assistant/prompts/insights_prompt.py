from typing import Any, Dict, List

# System prompt for the insights engine
INSIGHTS_SYSTEM_PROMPT = """
You are an experienced open-source maintainer reviewing GitHub repositories.
Given a short fact sheet about a repository, write a concise assessment of its
health for someone deciding whether to use or contribute to it.

Output ONLY a JSON object with the following structure:
{
  "summary": "string (2-3 sentence repository overview)",
  "strengths": ["string", "string", "string"],
  "improvements": ["string", "string"],
  "recommendation": "string (one key actionable recommendation)",
  "collaboration": "string (brief insight about team collaboration patterns)",
  "activity": "active|moderate|low",
  "quality": "integer between 1 and 100"
}

IMPORTANT:
- Base every statement on the fact sheet; do not invent features or history
- Keep each list item to a single short sentence
- If there is too little information, say so in the summary and keep the lists short
"""

MAX_COMMITS = 3
MAX_CONTRIBUTORS = 3
COMMIT_MESSAGE_CHARS = 50


def build_insights_prompt(snapshot: Dict[str, Any]) -> str:
    """Render the fact sheet for one repository snapshot (see GitHubService.get_repository_snapshot)."""
    info = snapshot.get("info") or {}
    commits: List[Dict[str, Any]] = snapshot.get("commits") or []
    contributors: List[Dict[str, Any]] = snapshot.get("contributors") or []
    languages: Dict[str, int] = snapshot.get("languages") or {}

    recent_activity = []
    for commit in commits[:MAX_COMMITS]:
        message = ((commit.get("commit") or {}).get("message") or "").splitlines()
        if message:
            recent_activity.append(f"- {message[0][:COMMIT_MESSAGE_CHARS]}")

    top_contributors = [c.get("login") for c in contributors[:MAX_CONTRIBUTORS] if c.get("login")]

    lines = [
        f"Repository: {info.get('full_name') or info.get('name', 'unknown')}",
        f"Description: {info.get('description') or 'None'}",
        f"Language: {info.get('language') or 'Unknown'}",
        f"Languages: {', '.join(languages) or 'Unknown'}",
        f"Stars: {info.get('stargazers_count', 0)}",
        f"Forks: {info.get('forks_count', 0)}",
        f"Open issues: {info.get('open_issues_count', 0)}",
        f"License: {(info.get('license') or {}).get('spdx_id') or 'None'}",
        f"Last updated: {info.get('updated_at') or 'unknown'}",
        "",
        "Recent activity:",
        "\n".join(recent_activity) or "- none",
        "",
        f"Contributors ({len(contributors)}): {', '.join(top_contributors) or 'none'}",
    ]
    return "\n".join(lines)
