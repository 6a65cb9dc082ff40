from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import List, Optional, Tuple

from .config import ProjectSettings
from .markdown_writer import render_frontmatter
from .models import ActivitySession, LinkStats, Project, ProjectStatus
from .storage import MemoryRepository
from .utils import sanitize_filename, short_uuid, utc_now, write_document

DEV_APPLICATIONS = ("VSCode", "IntelliJ", "Xcode", "Android Studio", "Cursor", "Zed")
BUILD_VERBS = ("编写", "开发", "构建", "实现", "设计", "重构")
LEARNING_KEYWORDS = ("阅读", "学习", "教程", "课程")
GENERIC_TAGS = {"编程", "工作", "学习", "浏览", "聊天", "开发", "work", "coding", "browsing", "communication"}
LONG_SESSION_MINUTES = 30
MIN_CANDIDATE_SIMILARITY = 0.3


def name_similarity(a: str, b: str) -> float:
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    lower_a, lower_b = a.lower(), b.lower()
    if lower_a in lower_b or lower_b in lower_a:
        return 0.85
    chars_a, chars_b = set(a), set(b)
    union = chars_a | chars_b
    return len(chars_a & chars_b) / len(union) if union else 0.0


def extract_project_keyword(title: str) -> Optional[str]:
    for verb in BUILD_VERBS:
        position = title.find(verb)
        if position >= 0:
            remainder = title[position:]
            if len(remainder) > len(verb):
                return remainder
    if "项目" in title:
        return title
    return None


def is_generic_tag(tag: str) -> bool:
    return tag in GENERIC_TAGS


def rule_based_name(session: ActivitySession) -> Optional[str]:
    if any(app in session.application for app in DEV_APPLICATIONS):
        keyword = extract_project_keyword(session.title)
        if keyword:
            return keyword
        for tag in session.tags:
            if tag != session.application and not is_generic_tag(tag):
                return tag

    if any(keyword in session.title for keyword in LEARNING_KEYWORDS):
        return session.title

    if session.duration_minutes >= LONG_SESSION_MINUTES:
        return extract_project_keyword(session.title)
    return None


class ProjectExtractor:
    def __init__(self, repository: MemoryRepository, memory_root: Path, settings: ProjectSettings, log):
        self._repo = repository
        self._root = memory_root
        self._settings = settings
        self._logger = log

    def resolve_name(self, session: ActivitySession) -> Optional[str]:
        hinted = self._repo.majority_project_name(session.id)
        if hinted:
            return hinted.strip()
        return rule_based_name(session)

    def extract(self, session: ActivitySession) -> Optional[str]:
        name = self.resolve_name(session)
        if not name:
            return None

        match = self.best_match(name, self._repo.active_projects())
        if match is not None and match[1] >= self._settings.similarity_threshold:
            project, score = match
            self._repo.link_activity(session.id, project.id, session.date)
            self._refresh_document(project.id)
            self._logger.info("Activity %s linked to project %s (similarity %.2f)", session.id, project.title, score)
            return project.id

        project = self._create(name, session)
        self._logger.info("Project created from activity %s: %s (%s)", session.id, name, project.id)
        return project.id

    def best_match(self, name: str, projects: List[Project]) -> Optional[Tuple[Project, float]]:
        best: Optional[Tuple[Project, float]] = None
        for project in projects:
            score = name_similarity(name, project.title)
            if best is None:
                if score > MIN_CANDIDATE_SIMILARITY:
                    best = (project, score)
            elif score > best[1]:
                best = (project, score)
        return best

    def process_unlinked(self, limit: Optional[int] = None) -> LinkStats:
        sessions = self._repo.unlinked_activities(limit or self._settings.batch_limit)
        stats = LinkStats(total=len(sessions))
        for session in sessions:
            try:
                project_id = self.extract(session)
            except (sqlite3.Error, OSError) as exc:
                self._logger.warning("Project extraction failed for %s: %s", session.id, exc)
                stats.failed += 1
                continue
            if project_id:
                stats.linked += 1
            else:
                # A session's name inputs never change, so it is not offered again.
                self._repo.mark_project_checked(session.id)
                stats.skipped += 1
        if stats.total:
            self._logger.info(
                "Project extraction: total=%s linked=%s skipped=%s failed=%s",
                stats.total,
                stats.linked,
                stats.skipped,
                stats.failed,
            )
        return stats

    def _create(self, name: str, session: ActivitySession) -> Project:
        project_id = f"project-{short_uuid()}"
        slug = sanitize_filename(name) or project_id
        markdown_path = f"projects/{slug}.md"
        if (self._root / markdown_path).exists():
            markdown_path = f"projects/{slug}-{project_id}.md"

        project = Project(
            id=project_id,
            title=name,
            description=f"从活动\"{session.title}\"中自动提取",
            start_date=session.date,
            last_activity_date=session.date,
            activity_count=1,
            tags=list(session.tags),
            status=ProjectStatus.ACTIVE,
            markdown_path=markdown_path,
            created_at=utc_now(),
        )
        self._repo.create_project(project, session.id)
        write_document(self._root, markdown_path, render_project(project, [session]))
        return project

    def _refresh_document(self, project_id: str) -> None:
        project = self._repo.get_project(project_id)
        if project is None:
            return
        write_document(self._root, project.markdown_path, render_project(project, self._repo.activities_for_project(project_id)))


def render_project(project: Project, activities: List[ActivitySession]) -> str:
    frontmatter = render_frontmatter(
        {
            "id": project.id,
            "title": project.title,
            "status": project.status.value,
            "start_date": project.start_date,
            "last_activity": project.last_activity_date,
            "activity_count": project.activity_count,
            "tags": list(project.tags),
        }
    )
    lines = [f"- {item.title} ({item.application}, {item.duration_minutes}分钟)" for item in activities]
    return f"{frontmatter}\n\n# {project.title}\n\n{project.description}\n\n## 相关活动\n\n" + "\n".join(lines) + "\n"
