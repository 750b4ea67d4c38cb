from .launcher import AgentLauncher, CommandLauncher, LaunchSpec
from .output import augment_prompt, extract_response_text, parse_agent_output, strip_json_metadata
from .profiles import ConfigProfileResolver, ProfileResolver
from .supervisor import AgentSupervisor, RunSignals, SessionOutcome, classify_outcome
from .thoughts import ThoughtDraft, ThoughtExtractor, detect_step
from .verify import discover_output_files, verify_file_claims

__all__ = [
    "AgentLauncher",
    "CommandLauncher",
    "LaunchSpec",
    "augment_prompt",
    "extract_response_text",
    "parse_agent_output",
    "strip_json_metadata",
    "ConfigProfileResolver",
    "ProfileResolver",
    "AgentSupervisor",
    "RunSignals",
    "SessionOutcome",
    "classify_outcome",
    "ThoughtDraft",
    "ThoughtExtractor",
    "detect_step",
    "discover_output_files",
    "verify_file_claims",
]
