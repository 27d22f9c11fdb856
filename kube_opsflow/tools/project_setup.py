"""
Project Setup - Repository Scaffolding Wizard

    discover -> reportScan -> generateFile (loops once per file) -> complete

`reportScan` turns the selected scopes and the files that already exist into
a queue of files to generate. `generateFile` accepts two payload shapes:

    {fileName, answers}                      answers for the current file
    {completedFileName, nextFileAnswers?}    current file is done; optionally
                                             answer the next file in the
                                             same request

The second shape is applied as two transitions inside one stored update.
File content itself is produced by the calling agent.
"""

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from ..domain.models import Question, StageToken
from ..execution.stages import TERMINAL, StageGraph, StageHandler, StagePrompt
from ..services.exceptions import InvalidField, MissingField

TOOL_NAME = "projectSetup"
PREFIX = "proj"

DISCOVER = StageToken("discover")
REPORT_SCAN = StageToken("reportScan")
GENERATE_FILE = StageToken("generateFile")

PENDING = "pending"
IN_PROGRESS = "in-progress"
DONE = "done"

SCOPES: Dict[str, List[str]] = {
    "readme": ["README.md"],
    "legal": ["LICENSE"],
    "github-community": ["CONTRIBUTING.md", "CODE_OF_CONDUCT.md", "SECURITY.md"],
    "ci": [".github/workflows/ci.yml"],
}

FILE_QUESTIONS: Dict[str, List[Question]] = {
    "README.md": [
        Question("projectName", "What is the project name?", required=True),
        Question("description", "Describe the project in one sentence.", required=True),
    ],
    "LICENSE": [
        Question("licenseType", "Which license should the project use?", required=True, default="Apache-2.0"),
        Question("copyrightHolder", "Who holds the copyright?", required=True),
    ],
    "CONTRIBUTING.md": [
        Question("maintainerEmail", "Which email should contributors use?", required=True),
    ],
    "CODE_OF_CONDUCT.md": [
        Question("enforcementContact", "Who enforces the code of conduct?", required=True),
    ],
    "SECURITY.md": [
        Question("securityEmail", "Where should vulnerabilities be reported?", required=True),
    ],
    ".github/workflows/ci.yml": [
        Question("defaultBranch", "What is the default branch?", required=True, default="main"),
    ],
}


def current_file(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """The first file still pending or in progress."""
    for entry in data.get("files", []):
        if entry["status"] in (PENDING, IN_PROGRESS):
            return entry
    return None


def check_answers(file_name: str, answers: Any) -> None:
    if not isinstance(answers, dict):
        raise InvalidField("answers", "expected an object keyed by question id")
    for question in FILE_QUESTIONS.get(file_name, []):
        value = answers.get(question.id)
        if question.required and (value is None or (isinstance(value, str) and not value.strip())):
            raise MissingField(f"answers.{question.id}")


def _with_file(data: Dict[str, Any], file_name: str, **changes) -> Dict[str, Any]:
    merged = dict(data)
    merged["files"] = [
        {**entry, **changes} if entry["fileName"] == file_name else dict(entry)
        for entry in data.get("files", [])
    ]
    return merged


class DiscoverStage(StageHandler):
    token = DISCOVER

    def validate(self, data: Dict[str, Any], payload: Dict[str, Any]) -> None:
        scopes = payload.get("scopes")
        if scopes is None:
            return
        if not isinstance(scopes, list) or not scopes:
            raise InvalidField("scopes", "expected a non-empty list")
        unknown = [str(s) for s in scopes if s not in SCOPES]
        if unknown:
            raise InvalidField("scopes", f"unknown scopes {', '.join(unknown)}; available: {', '.join(SCOPES)}")

    def transform(self, data: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(data)
        merged["selectedScopes"] = list(payload.get("scopes") or SCOPES)
        return merged

    def next(self, data: Dict[str, Any]) -> StageToken:
        return REPORT_SCAN

    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        return StagePrompt(
            prompt="Which scopes should be set up for this repository?",
            instruction="Call this tool with `scopes` (omit it to set up every scope).",
            data={"availableScopes": SCOPES},
        )


class ReportScanStage(StageHandler):
    token = REPORT_SCAN
    required_fields = ("existingFiles",)

    def validate(self, data: Dict[str, Any], payload: Dict[str, Any]) -> None:
        files = payload["existingFiles"]
        if not isinstance(files, list) or not all(isinstance(name, str) for name in files):
            raise InvalidField("existingFiles", "expected a list of file paths")

    def transform(self, data: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        existing = set(payload["existingFiles"])
        merged = dict(data)
        merged["existingFiles"] = sorted(existing)
        merged["files"] = [
            {"fileName": name, "scope": scope, "status": PENDING, "answers": {}}
            for scope in data.get("selectedScopes", [])
            for name in SCOPES[scope]
            if name not in existing
        ]
        return merged

    def next(self, data: Dict[str, Any]) -> StageToken:
        return GENERATE_FILE if current_file(data) else TERMINAL

    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        files = [name for scope in data.get("selectedScopes", []) for name in SCOPES[scope]]
        return StagePrompt(
            prompt="Check which of these files already exist in the repository.",
            instruction="Call this tool with `existingFiles` listing the ones that exist.",
            data={"filesToCheck": files},
        )


class GenerateFileStage(StageHandler):
    token = GENERATE_FILE
    chain_key = "nextFileAnswers"

    def validate(self, data: Dict[str, Any], payload: Dict[str, Any]) -> None:
        entry = current_file(data)
        if entry is None:
            raise InvalidField("fileName", "no file remains to be generated")

        if payload.get("completedFileName") is not None:
            if payload["completedFileName"] != entry["fileName"]:
                raise InvalidField(
                    "completedFileName", f"the file in progress is '{entry['fileName']}'"
                )
            if entry["status"] != IN_PROGRESS:
                raise InvalidField(
                    "completedFileName", f"'{entry['fileName']}' has not been generated yet"
                )
            return

        if not payload.get("fileName"):
            raise MissingField("fileName")
        if payload["fileName"] != entry["fileName"]:
            raise InvalidField("fileName", f"the next file to generate is '{entry['fileName']}'")
        check_answers(entry["fileName"], payload.get("answers") or {})

    def transform(self, data: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        if payload.get("completedFileName") is not None:
            return _with_file(data, payload["completedFileName"], status=DONE)
        return _with_file(
            data, payload["fileName"], status=IN_PROGRESS, answers=dict(payload.get("answers") or {})
        )

    def next(self, data: Dict[str, Any]) -> StageToken:
        return GENERATE_FILE if current_file(data) else TERMINAL

    def chained_payload(
        self, data: Dict[str, Any], payload: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        if payload.get("completedFileName") is None or payload.get(self.chain_key) is None:
            return None
        entry = current_file(data)
        if entry is None:
            return None
        return {"fileName": entry["fileName"], "answers": payload[self.chain_key]}

    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        entry = current_file(data)
        done = len([e for e in data.get("files", []) if e["status"] == DONE])
        total = len(data.get("files", []))
        if entry["status"] == IN_PROGRESS:
            return StagePrompt(
                prompt=f'Generate "{entry["fileName"]}" ({entry["scope"]} scope) from the answers.',
                instruction=(
                    "Write the file, then call this tool with `completedFileName` "
                    "(and `nextFileAnswers` for the next file, if you already have them)."
                ),
                data={"file": entry, "progress": {"done": done, "total": total}},
            )
        return StagePrompt(
            prompt=f'Next file to generate: "{entry["fileName"]}" ({entry["scope"]} scope).',
            instruction="Ask the user these questions, then call this tool with `fileName` and `answers`.",
            data={
                "fileName": entry["fileName"],
                "questions": [asdict(q) for q in FILE_QUESTIONS.get(entry["fileName"], [])],
                "progress": {"done": done, "total": total},
            },
        )


def completion_prompt(data: Dict[str, Any]) -> StagePrompt:
    generated = [e["fileName"] for e in data.get("files", []) if e["status"] == DONE]
    return StagePrompt(
        prompt="Setup completed successfully.",
        instruction="All files have been generated.",
        data={"generatedFiles": generated, "skippedFiles": data.get("existingFiles", [])},
    )


def build_graph() -> StageGraph:
    graph = StageGraph(
        name=TOOL_NAME,
        prefix=PREFIX,
        initial=DISCOVER,
        description="Scaffold repository governance and CI files one file at a time",
        completion_prompt=completion_prompt,
    )
    graph.register(DiscoverStage())
    graph.register(ReportScanStage())
    graph.register(GenerateFileStage())
    return graph
