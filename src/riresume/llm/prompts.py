from __future__ import annotations

MATCH_ANALYSIS_PROMPT = """
Compare the resume with the job posting.
Return strict JSON with keys:
- match_analysis: object with keys
  - matched_skills, partial_matches, missing_skills: arrays of
    {{skill: string, importance: critical|high|medium|low, user_has: bool,
      transferable_from: string, confidence: number}}
  - keyword_density: number 0..100
  - experience_match: {{required: string, user: string, match: number 0..100}}
- gaps: object with keys
  - critical_gaps, minor_gaps: arrays of
    {{skill: string, importance: string, has_transferable: bool,
      transferable_skill: string, estimated_learning_time: string}}
  - total_gap_score: number 0..100

Job posting JSON:
{job_json}

Resume JSON:
{resume_json}
""".strip()

OPTIMIZE_RESUME_PROMPT = """
Rewrite the resume so it passes ATS screening for the job, without inventing experience.
Return strict JSON with keys:
- optimized_resume: object with the same shape as the input resume
- changes: array of {{section: string, before: string, after: string, reason: string}}

Job posting JSON:
{job_json}

Current match analysis JSON:
{match_json}

Resume JSON:
{resume_json}
""".strip()

ADD_SKILLS_PROMPT = """
Incorporate the listed skills into the resume truthfully, in the skills section and,
where they fit, in experience bullets.
Return strict JSON with keys:
- optimized_resume: object with the same shape as the input resume
- changes: array of {{section: string, before: string, after: string, reason: string}}

Skills to add: {skills}

Job posting JSON:
{job_json}

Resume JSON:
{resume_json}
""".strip()

COVER_LETTER_PROMPT = """
Write a concise, specific cover letter (under 350 words) for this candidate and job.
Return plain text only.

Job posting JSON:
{job_json}

Resume JSON:
{resume_json}
""".strip()

PREP_GUIDE_PROMPT = """
Prepare an interview prep guide for this candidate and job.
Return strict JSON with keys:
- company_intelligence: string
- role_analysis: string
- technical_prep: string
- behavioral_framework: string
- questions_to_ask: string[]

Job posting JSON:
{job_json}

Resume JSON:
{resume_json}
""".strip()
