from __future__ import annotations

import json
import logging
import re
from typing import Any

from riresume.config import Settings, get_settings
from riresume.llm.prompts import (
    ADD_SKILLS_PROMPT,
    COVER_LETTER_PROMPT,
    MATCH_ANALYSIS_PROMPT,
    OPTIMIZE_RESUME_PROMPT,
    PREP_GUIDE_PROMPT,
)
from riresume.llm.providers import ProviderPool
from riresume.types import (
    ExperienceMatch,
    Gap,
    GapAnalysis,
    JobPosting,
    MatchAnalysis,
    OptimizationResult,
    ParsedResume,
    PrepGuide,
    ResumeChange,
    SkillMatch,
)

logger = logging.getLogger(__name__)

HEURISTIC = "heuristic"

COMMON_SKILLS = (
    "python",
    "java",
    "javascript",
    "typescript",
    "react",
    "node.js",
    "sql",
    "postgresql",
    "aws",
    "azure",
    "gcp",
    "docker",
    "kubernetes",
    "terraform",
    "git",
    "linux",
    "machine learning",
    "data analysis",
    "excel",
    "tableau",
    "project management",
    "agile",
    "communication",
    "leadership",
)


class LLMRouter:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.pool = ProviderPool(self.settings)
        self.last_provider = HEURISTIC

    def analyze_match(self, *, job: JobPosting, resume: ParsedResume) -> tuple[MatchAnalysis, GapAnalysis]:
        prompt = MATCH_ANALYSIS_PROMPT.format(job_json=_dumps(job), resume_json=_dumps(resume))
        data = self._call_json(task="analyze", prompt=prompt, model=self.settings.openai_model_analyzer)
        if data:
            try:
                return (
                    MatchAnalysis.model_validate(data.get("match_analysis", {})),
                    GapAnalysis.model_validate(data.get("gaps", {})),
                )
            except Exception:
                logger.warning("Invalid match analysis payload; falling back to heuristic")
        self.last_provider = HEURISTIC
        return heuristic_match_analysis(job=job, resume=resume)

    def optimize_resume(
        self,
        *,
        job: JobPosting,
        resume: ParsedResume,
        match: MatchAnalysis,
    ) -> OptimizationResult:
        prompt = OPTIMIZE_RESUME_PROMPT.format(
            job_json=_dumps(job),
            match_json=match.model_dump_json(),
            resume_json=_dumps(resume),
        )
        data = self._call_json(task="writer", prompt=prompt, model=self.settings.openai_model_writer)
        result = self._optimization(data)
        if result is not None:
            return result
        self.last_provider = HEURISTIC
        return heuristic_optimize(job=job, resume=resume, match=match)

    def add_skills(self, *, job: JobPosting, resume: ParsedResume, skills: list[str]) -> OptimizationResult:
        prompt = ADD_SKILLS_PROMPT.format(
            skills=", ".join(skills),
            job_json=_dumps(job),
            resume_json=_dumps(resume),
        )
        data = self._call_json(task="writer", prompt=prompt, model=self.settings.openai_model_writer)
        result = self._optimization(data)
        if result is not None:
            return result
        self.last_provider = HEURISTIC
        return heuristic_add_skills(resume=resume, skills=skills)

    def cover_letter(self, *, job: JobPosting, resume: ParsedResume) -> str:
        prompt = COVER_LETTER_PROMPT.format(job_json=_dumps(job), resume_json=_dumps(resume))
        text = self._call_text(task="writer", prompt=prompt, model=self.settings.openai_model_writer).strip()
        if text:
            return text
        self.last_provider = HEURISTIC
        return heuristic_cover_letter(job=job, resume=resume)

    def prep_guide(self, *, job: JobPosting, resume: ParsedResume) -> PrepGuide:
        prompt = PREP_GUIDE_PROMPT.format(job_json=_dumps(job), resume_json=_dumps(resume))
        data = self._call_json(task="writer", prompt=prompt, model=self.settings.openai_model_writer)
        if data:
            try:
                return PrepGuide.model_validate(data)
            except Exception:
                logger.warning("Invalid prep guide payload; falling back to heuristic")
        self.last_provider = HEURISTIC
        return heuristic_prep_guide(job=job, resume=resume)

    def _optimization(self, data: dict[str, Any]) -> OptimizationResult | None:
        if not data or not isinstance(data.get("optimized_resume"), dict):
            return None
        try:
            return OptimizationResult.model_validate(data)
        except Exception:
            logger.warning("Invalid optimization payload; falling back to heuristic")
            return None

    def _preferred(self, task: str) -> str:
        return {
            "analyze": self.settings.llm_router_analyze_provider,
            "writer": self.settings.llm_router_writer_provider,
        }.get(task, self.settings.llm_router_default)

    def _call_json(self, *, task: str, prompt: str, model: str) -> dict[str, Any]:
        for provider in self.pool.ordered(self._preferred(task)):
            if not provider.available:
                continue
            target = self.settings.local_llm_model if provider.name == "local" else model
            try:
                data = provider.complete_json(model=target, prompt=prompt)
            except Exception as exc:
                logger.warning("LLM JSON call failed provider=%s error=%s", provider.name, exc)
                continue
            if data:
                self.last_provider = provider.name
                return data
        return {}

    def _call_text(self, *, task: str, prompt: str, model: str) -> str:
        for provider in self.pool.ordered(self._preferred(task)):
            if not provider.available:
                continue
            target = self.settings.local_llm_model if provider.name == "local" else model
            try:
                text = provider.complete_text(model=target, prompt=prompt).content
            except Exception as exc:
                logger.warning("LLM text call failed provider=%s error=%s", provider.name, exc)
                continue
            if text.strip():
                self.last_provider = provider.name
                return text
        return ""


def _dumps(value: Any) -> str:
    data = value.model_dump() if hasattr(value, "model_dump") else value
    return json.dumps(data, ensure_ascii=True, default=str)


def resume_text(resume: ParsedResume) -> str:
    parts = [resume.summary, " ".join(resume.skills)]
    for item in resume.experience:
        parts.extend(str(value) for value in item.values() if isinstance(value, str))
        bullets = item.get("bullets") or []
        if isinstance(bullets, list):
            parts.extend(str(bullet) for bullet in bullets)
    return "\n".join(parts).lower()


def job_skills(job: JobPosting) -> list[str]:
    if job.skills:
        return [skill.strip() for skill in job.skills if skill.strip()]
    text = " ".join([job.description, *job.requirements]).lower()
    return [skill for skill in COMMON_SKILLS if re.search(rf"(?<![a-z]){re.escape(skill)}(?![a-z])", text)]


def heuristic_match_analysis(*, job: JobPosting, resume: ParsedResume) -> tuple[MatchAnalysis, GapAnalysis]:
    owned = {skill.strip().lower() for skill in resume.skills}
    text = resume_text(resume)
    requirement_text = " ".join(job.requirements).lower()

    matched: list[SkillMatch] = []
    partial: list[SkillMatch] = []
    missing: list[SkillMatch] = []
    for skill in job_skills(job):
        key = skill.lower()
        importance = "critical" if key in requirement_text else "high"
        if key in owned:
            matched.append(SkillMatch(skill=skill, importance=importance, user_has=True, confidence=0.9))
        elif key in text:
            partial.append(SkillMatch(skill=skill, importance=importance, user_has=True, confidence=0.5))
        else:
            missing.append(SkillMatch(skill=skill, importance=importance, confidence=0.8))

    total = len(matched) + len(partial) + len(missing)
    density = ((len(matched) + len(partial)) / total) * 100 if total else 0.0
    years = [int(value) for value in re.findall(r"(\d+)\+?\s+years", job.description.lower())]
    experience_ratio = min(1.0, len(resume.experience) / 3) if resume.experience else 0.0
    match = MatchAnalysis(
        matched_skills=matched,
        partial_matches=partial,
        missing_skills=missing,
        keyword_density=round(density, 1),
        experience_match=ExperienceMatch(
            required=f"{max(years)}+ years" if years else "",
            user=f"{len(resume.experience)} roles",
            match=round(experience_ratio * 100, 1),
        ),
    )

    critical = [
        Gap(skill=item.skill, importance=item.importance, estimated_learning_time="4-6 weeks")
        for item in missing
        if item.importance in ("critical", "high")
    ]
    minor = [
        Gap(skill=item.skill, importance=item.importance, estimated_learning_time="1-2 weeks")
        for item in missing
        if item.importance not in ("critical", "high")
    ]
    gap_score = (len(missing) / total) * 100 if total else 0.0
    return match, GapAnalysis(critical_gaps=critical, minor_gaps=minor, total_gap_score=round(gap_score, 1))


def heuristic_optimize(*, job: JobPosting, resume: ParsedResume, match: MatchAnalysis) -> OptimizationResult:
    optimized = resume.model_copy(deep=True)
    changes: list[ResumeChange] = []

    relevant = [item.skill for item in match.matched_skills + match.partial_matches]
    if relevant:
        lowered = {skill.lower() for skill in relevant}
        reordered = [skill for skill in resume.skills if skill.lower() in lowered]
        reordered += [skill for skill in resume.skills if skill.lower() not in lowered]
        reordered += [skill for skill in relevant if skill.lower() not in {s.lower() for s in reordered}]
        if reordered != resume.skills:
            optimized.skills = reordered
            changes.append(
                ResumeChange(
                    section="skills",
                    before=", ".join(resume.skills),
                    after=", ".join(reordered),
                    reason="Lead with skills the posting asks for",
                )
            )

    if job.title:
        focus = ", ".join(relevant[:4])
        summary = f"{job.title} candidate" + (f" with hands-on experience in {focus}." if focus else ".")
        if resume.summary:
            summary = f"{summary} {resume.summary}"
        if summary != resume.summary:
            optimized.summary = summary
            changes.append(
                ResumeChange(
                    section="summary",
                    before=resume.summary,
                    after=summary,
                    reason="Target the summary at the role title",
                )
            )

    return OptimizationResult(optimized_resume=optimized, changes=changes)


def heuristic_add_skills(*, resume: ParsedResume, skills: list[str]) -> OptimizationResult:
    optimized = resume.model_copy(deep=True)
    existing = {skill.lower() for skill in resume.skills}
    added = [skill for skill in skills if skill.strip() and skill.lower() not in existing]
    optimized.skills = [*resume.skills, *added]
    changes = []
    if added:
        changes.append(
            ResumeChange(
                section="skills",
                before=", ".join(resume.skills),
                after=", ".join(optimized.skills),
                reason=f"Added {', '.join(added)}",
            )
        )
    return OptimizationResult(optimized_resume=optimized, changes=changes)


def heuristic_cover_letter(*, job: JobPosting, resume: ParsedResume) -> str:
    name = resume.name or "Candidate"
    role = job.title or "the open"
    skills = ", ".join(resume.skills[:4])
    lines = [
        f"Dear Hiring Team at {job.company or 'your company'},",
        "",
        f"I am applying for the {role} role.",
    ]
    if skills:
        lines.append(f"My background in {skills} matches what the team needs, and I can contribute from day one.")
    else:
        lines.append("My background aligns with your requirements, and I can contribute from day one.")
    lines += ["", "Sincerely,", name]
    return "\n".join(lines)


def heuristic_prep_guide(*, job: JobPosting, resume: ParsedResume) -> PrepGuide:
    skills = job_skills(job)
    return PrepGuide(
        company_intelligence=f"Research {job.company or 'the company'}: products, recent news and team structure.",
        role_analysis=f"The {job.title or 'role'} centers on " + (", ".join(skills[:5]) or "the listed requirements") + ".",
        technical_prep="Review: " + (", ".join(skills) or "core fundamentals for the role") + ".",
        behavioral_framework="Prepare STAR stories for ownership, conflict, failure and impact.",
        questions_to_ask=[
            "What does success look like in the first 90 days?",
            "How is the team structured and how are priorities set?",
            "What are the biggest challenges the team faces right now?",
        ],
    )
