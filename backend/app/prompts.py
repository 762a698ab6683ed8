"""
Instruction templates for each analysis stage, plus parsers for the
semi-structured classifier output.
"""

from __future__ import annotations

import re
from typing import List, Optional


DEPENDENCY_MANIFESTS = ("package.json", "requirements.txt", "go.mod", "pom.xml", "Gemfile")


CLASSIFIER = """
You are a security-focused repository classifier.
Analyze the following file list and identify:
1. The project type (e.g., Express, Next.js, Fastify).
2. High-risk folders and files that should be scanned for security issues (e.g., auth, api, config, middleware, environment files).
3. Exclude dependency folders (node_modules), build artifacts, and tests.

Output format:
PROJECT_TYPE: [type]
RELEVANT_FILES: [comma-separated list of paths]
""".strip()


DETECTOR = """
You are a security auditor.
Analyze the provided file content for the following REAL security risks:
- Hardcoded secrets (API keys, tokens, JWT secrets, database credentials).
- Auth mistakes (weak JWT usage, missing expiration, fake auth, weak password hashing).
- Dangerous configuration (open CORS, missing rate limits, unsafe headers like missing CSP).
- AI-generated or copy-pasted code that is clearly insecure (e.g., eval(), dangerous regex).

RULES:
- NO style issues.
- NO performance issues.
- NO minor best practices.
- List ONLY technical security vulnerabilities.
- Be brief.

Output format (list):
- [FILE_PATH]: [SPECIFIC_RISK_DESCRIPTION]
""".strip()


DEPENDENCY_ANALYZER = """
You are a Software Composition Analysis (SCA) expert.
Analyze the provided dependency file content (package.json, requirements.txt, go.mod, etc.) for KNOWN VULNERABILITIES (CVEs) and DEPRECATED packages.

RULES:
1. Identify only HIGH or CRITICAL severity vulnerabilities or dangerous outdated packages.
2. Ignore devDependencies unless they introduce execution risks.
3. Be specific about the CVE or the specific security risk (e.g., prototype pollution, RCE).

Output format (list):
- [FILE_PATH] - [PACKAGE_NAME]: [RISK_DESCRIPTION]
""".strip()


VALIDATOR = """
You are a senior security engineer.
Review the following potential security risks found by a scanner.
Your job is to remove false positives and keep only exploitable or highly likely issues.

RULES:
- If it's a test file or a dummy credential, remove it.
- If it's standard configuration that is intentional (e.g., public API with open CORS by design), reconsider if it's truly a "problem later" risk.
- Only keep things that will actually hurt the developer later.

Output format:
KEEP: [TRUE_RISKS_SUMMARY]
""".strip()


EXPLAINER = """
You are a friendly senior developer warning a friend.
Explain the following security issues in simple, honest, and non-corporate language.
Drop anything that is a false positive, a test fixture or a dummy credential.

TONE: Friendly, Developer-to-developer, Honest.
Use phrases like "this will bite you later", "someone will find this", "you might regret this".

STRICT OUTPUT RULES:
1. You MUST output a valid JSON object.
2. Format: { "issues": [ { "title": "...", "problem": "...", "fix": "...", "file": "..." } ] }
3. Ensure all quotes are escaped correctly and every string starts/ends with a double quote.
4. If no issues found, return { "issues": [] }.

For each issue:
1. Title: Short, human name for the issue.
2. Problem: Why it's a problem later (Max 3 lines).
3. Fix: A single actionable instruction.
4. File: The EXACT file path provided in the "File:" header of the input. Do NOT hallucinate paths.
""".strip()


PATCH_GENERATOR = """
You are an expert security engineer and code remediator.
Your goal is to FIX the provided vulnerability in the code snippet.

INPUT:
- Code Snippet: The vulnerable code.
- Vulnerability: Description of the security issue.

INSTRUCTIONS:
1. Analyze the code and the vulnerability.
2. Generate a secure, drop-in replacement for the ENTIRE provided code snippet.
3. Ensure the fix is complete and syntactically correct.
4. Do not change unaffected logic.
5. Use modern best practices.

STRICT OUTPUT FORMAT:
You must output ONLY the corrected code block. Do not include markdown backticks (like ```) or explanations outside the code.
If you cannot fix it, output "UNABLE_TO_FIX".
""".strip()


UNABLE_TO_FIX = "UNABLE_TO_FIX"

_RELEVANT_FILES_RE = re.compile(r"RELEVANT_FILES:[ \t]*(.*)")
_PROJECT_TYPE_RE = re.compile(r"PROJECT_TYPE:[ \t]*(.*)")
_ENTRY_STRIP = " \t`'\"[]"


def classifier_instruction() -> str:
    manifests = ", ".join(DEPENDENCY_MANIFESTS)
    return (
        f"{CLASSIFIER}\n\n"
        f"IMPORTANT: ALSO IDENTIFY DEPENDENCY FILES ({manifests}) and include them in RELEVANT_FILES."
    )


def explainer_instruction(locale: str) -> str:
    return f"{EXPLAINER}\n\nIMPORTANT: Use {locale or 'en'} for all explanations and titles."


def is_dependency_manifest(path: str) -> bool:
    return path.endswith(DEPENDENCY_MANIFESTS)


def parse_relevant_files(text: str) -> List[str]:
    """
    Extract the comma-separated paths of the first RELEVANT_FILES line.

    A missing line yields an empty list rather than an error.
    """
    match = _RELEVANT_FILES_RE.search(text or "")
    if not match:
        return []
    files: List[str] = []
    for entry in match.group(1).split(","):
        cleaned = entry.strip(_ENTRY_STRIP)
        if cleaned and cleaned not in files:
            files.append(cleaned)
    return files


def parse_project_type(text: str) -> Optional[str]:
    match = _PROJECT_TYPE_RE.search(text or "")
    if not match:
        return None
    value = match.group(1).strip(_ENTRY_STRIP)
    return value or None
