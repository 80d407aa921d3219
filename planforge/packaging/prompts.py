"""Fixed text rendered into every package.

The four agent prompts are skeletons filled with the project name and the
matching completed outputs; the developer prompt carries all of them.
"""

import json
from typing import Optional

from planforge.sessions.schemas import Phase, Session

AGENT_PROMPT_ROLES = ("analyst", "pm", "architect", "developer")

STORY_SEPARATOR = "\n\n---\n\n"


def find_output(session: Session, phase: Phase, output_type: str) -> Optional[str]:
    """Content of the first output of `output_type` in a completed phase."""
    record = session.phases.get(phase.value)
    if record is None or not record.completed:
        return None
    for output in record.outputs:
        if output.type == output_type:
            return output.content
    return None


def collect_outputs(session: Session, phase: Phase, output_type: str) -> list[str]:
    record = session.phases.get(phase.value)
    if record is None or not record.completed:
        return []
    return [o.content for o in record.outputs if o.type == output_type]


def _analyst_prompt(session: Session) -> str:
    brief = find_output(session, Phase.ANALYST, "project-brief")
    return f"""# Analyst Agent Prompt

You are an expert business analyst and researcher. Your task is to help implement the project based on the following brief:

## Project Overview
**Project Name:** {session.project_name}

## Project Brief
{brief or 'No project brief available'}

## Your Role
- Conduct additional research as needed
- Clarify requirements and assumptions
- Identify potential risks and opportunities
- Provide detailed analysis and recommendations

## Instructions
Use this information to guide your analysis and provide detailed insights for the development team."""


def _pm_prompt(session: Session) -> str:
    prd = find_output(session, Phase.PM, "prd")
    return f"""# Product Manager Agent Prompt

You are an expert product manager. Use the following PRD to guide product development:

## Project Overview
**Project Name:** {session.project_name}

## Product Requirements Document
{prd or 'No PRD available'}

## Your Role
- Ensure product requirements are met
- Prioritize features and functionality
- Make product decisions based on the PRD
- Coordinate with development team

## Instructions
Reference this PRD for all product-related decisions and implementations."""


def _architect_prompt(session: Session) -> str:
    architecture = find_output(session, Phase.ARCHITECT, "architecture")
    return f"""# System Architect Agent Prompt

You are a senior system architect. Use the following architecture document to guide system design:

## Project Overview
**Project Name:** {session.project_name}

## System Architecture
{architecture or 'No architecture document available'}

## Your Role
- Implement the defined system architecture
- Ensure scalability and performance requirements are met
- Make technical decisions aligned with the architecture
- Guide development team on technical implementation

## Instructions
Follow this architecture document for all system design and implementation decisions."""


def _developer_prompt(session: Session) -> str:
    brief = find_output(session, Phase.ANALYST, "project-brief")
    prd = find_output(session, Phase.PM, "prd")
    architecture = find_output(session, Phase.ARCHITECT, "architecture")
    frontend = find_output(session, Phase.DESIGN_ARCHITECT, "frontend-architecture")
    uiux = find_output(session, Phase.DESIGN_ARCHITECT, "uiux-spec")
    stories = STORY_SEPARATOR.join(collect_outputs(session, Phase.SM, "story"))
    return f"""# Developer Agent Prompt

You are a senior full-stack developer. Use the following comprehensive project documentation to guide development:

## Project Overview
**Project Name:** {session.project_name}

## Complete Project Documentation

### Project Brief
{brief or 'No project brief available'}

### Product Requirements Document
{prd or 'No PRD available'}

### System Architecture
{architecture or 'No architecture document available'}

### Frontend Architecture & UI/UX Specifications
{frontend or 'No frontend architecture available'}

{uiux or 'No UI/UX specifications available'}

### User Stories
{stories or 'No user stories available'}

## Your Role
- Implement all features according to specifications
- Follow the defined architecture and design patterns
- Ensure code quality and best practices
- Test implementations thoroughly

## Instructions
Use this comprehensive documentation to build the complete application. Prioritize user stories and follow the technical specifications exactly."""


_PROMPT_BUILDERS = {
    "analyst": _analyst_prompt,
    "pm": _pm_prompt,
    "architect": _architect_prompt,
    "developer": _developer_prompt,
}


def render_agent_prompt(role: str, session: Session) -> str:
    return _PROMPT_BUILDERS[role](session)


def render_checklist(name: str, completion_percentage: int, timestamp: str, responses: dict) -> str:
    return (
        f"# {name} - Completed\n\n"
        f"**Completion:** {completion_percentage}%\n"
        f"**Completed At:** {timestamp}\n\n"
        f"## Results\n"
        f"{json.dumps(responses, indent=2, ensure_ascii=False, default=str)}"
    )


def render_readme(session: Session, generated_at: str) -> str:
    return f"""# {session.project_name}

Generated by Planforge

## Project Overview
This package contains all the planning documents and agent prompts needed to implement your project using AI-driven development.

## Contents

### Documentation (/docs)
- Project brief and requirements
- System architecture documents
- Frontend architecture and UI/UX specifications
- User stories and epics

### Agent Prompts (/agent-prompts)
- Ready-to-use prompts for different AI agents
- Analyst, PM, Architect, and Developer prompts
- Copy and paste into your preferred AI coding tool

### Checklists (/checklists)
- Completed validation checklists
- Quality assurance records

## How to Use

1. **Start with the Developer Agent Prompt**: Use `agent-prompts/developer-agent-prompt.md` as your main prompt for AI coding tools
2. **Reference Documentation**: All project docs are in the `docs/` folder
3. **Follow User Stories**: Implement features based on the user stories provided
4. **Use Specialized Prompts**: Switch to specific agent prompts for specialized tasks

## Generated On
{generated_at}

## Session ID
{session.id}
"""
