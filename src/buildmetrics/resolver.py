"""Tag resolution for build completions.

Tags for a build are collected from several sources and merged in a fixed
order. Later sources only add values; nothing is ever overridden.

    1. job tag file (or the global tag file when the job's file is unreadable)
    2. job tag properties
    3. environment expansion of the items from 1 and 2 (``name=value``)
    4. global job tags (``regex, name:value, ...`` lines)
    5. pipeline-declared tags
    6. global tags

A missing configuration object, file or malformed item contributes nothing.
The resolved sets are frozen.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import Path
from string import Template

from buildmetrics.config import GlobalConfig, JobConfig
from buildmetrics.events import BuildCompletionEvent
from buildmetrics.tags import TagSet, parse_tag_item, split_items, split_lines

logger = logging.getLogger(__name__)

BRANCH_ENV_VARS = ("GIT_BRANCH", "BRANCH_NAME", "CVS_BRANCH")


def expand_env(text: str, env: Mapping[str, str]) -> str:
    """Expand ``$VAR`` and ``${VAR}`` references, leaving unknown ones as-is."""
    return Template(text).safe_substitute(env)


def tags_from_var_list(text: str | None, env: Mapping[str, str]) -> TagSet:
    """Parse a tag file or tag properties string.

    Each line holds comma-separated items. Items are expanded against
    ``env`` and split on the first ``=``; an item without ``=`` is kept
    whole as a valueless tag name.
    """
    tags = TagSet()
    for line in split_lines(text):
        for item in split_items(line):
            expanded = expand_env(item.replace(" ", ""), env)
            if "=" not in expanded:
                tags.add(expanded)
                logger.debug(f"Emitted tag {expanded}")
                continue
            parsed = parse_tag_item(expanded, separator="=")
            if parsed is None:
                continue
            tags.add(*parsed)
            logger.debug(f"Emitted tag {parsed[0]}:{parsed[1]}")
    return tags


def read_tag_file(path: str | None, workspace: Path | None) -> str | None:
    """Read a tag file, resolving relative paths against the workspace.

    Returns:
        The file contents, or None if the file cannot be read.
    """
    if not path:
        return None
    tag_path = Path(path)
    if not tag_path.is_absolute():
        if workspace is None:
            logger.debug(f"No workspace to resolve tag file {path}")
            return None
        tag_path = workspace / tag_path
    try:
        return tag_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Could not read tag file {tag_path}: {e}")
        return None


class TagResolver:
    """Resolves the tag set for a build completion.

    Args:
        host_env: Environment of the CI server process, used for ``$VAR``
            references in globally configured tags.
    """

    def __init__(self, host_env: Mapping[str, str] | None = None):
        self.host_env: Mapping[str, str] = dict(host_env or {})

    def resolve(
        self,
        event: BuildCompletionEvent,
        job_config: JobConfig | None,
        global_config: GlobalConfig | None,
    ) -> TagSet:
        """Merge every configured tag source for ``event``."""
        result = TagSet()

        contents = None
        if job_config is not None:
            contents = read_tag_file(job_config.tag_file, event.workspace)
        if contents is None and global_config is not None:
            contents = read_tag_file(global_config.global_tag_file, event.workspace)
        if contents is not None:
            result.merge(tags_from_var_list(contents, event.env))

        if job_config is not None:
            result.merge(tags_from_var_list(job_config.tag_properties, event.env))

        if global_config is not None:
            result.merge(self.tags_from_global_job_tags(event.job.full_name, global_config))

        result.merge(self.tags_from_pipeline(event.pipeline_tags))

        if global_config is not None:
            result.merge(self.tags_from_global_tags(global_config))

        return result.freeze()

    def resolve_build_tags(
        self,
        event: BuildCompletionEvent,
        job_config: JobConfig | None,
        global_config: GlobalConfig | None,
    ) -> TagSet:
        """Tags describing the build itself, followed by the resolved tags.

        The build tags (job, node, result, branch, user) keep their case.
        """
        tags = TagSet()
        tags.add("job", event.job.full_name)

        emit_node = global_config.emit_node_tag if global_config is not None else True
        node_name = event.env.get("NODE_NAME")
        if emit_node and node_name:
            tags.add("node", node_name)

        if event.result_token:
            tags.add("result", event.result_token)

        for var in BRANCH_ENV_VARS:
            branch = event.env.get(var)
            if branch:
                tags.add("branch", branch)
                break

        if event.user_id:
            tags.add("user", event.user_id)

        return tags.merge(self.resolve(event, job_config, global_config)).freeze()

    def tags_from_global_job_tags(self, job_name: str, global_config: GlobalConfig) -> TagSet:
        """Apply the global job tag rules whose pattern fully matches the job.

        A value of ``$N`` takes capture group N of the job pattern. If the
        pattern has no such group, the rest of the value names a host
        environment variable. Tags whose reference resolves to nothing are
        dropped.
        """
        tags = TagSet()
        for rule in global_config.job_tag_rules:
            match = rule.pattern.fullmatch(job_name)
            if match is None:
                continue
            for item in rule.items:
                parsed = parse_tag_item(item, lower=False)
                if parsed is None:
                    continue
                name, value = parsed
                if value.startswith("$"):
                    value = self._resolve_reference(value, match)
                    if value is None:
                        logger.debug(
                            "Specified a capture group or environment variable "
                            f"that doesn't exist, not applying tag: {item}"
                        )
                        continue
                tags.add(name, value.lower())
        return tags

    def tags_from_global_tags(self, global_config: GlobalConfig) -> TagSet:
        """Parse the global tags applied to every build."""
        tags = TagSet()
        for line in split_lines(global_config.global_tags):
            for item in split_items(line):
                parsed = parse_tag_item(item, lower=False)
                if parsed is None:
                    continue
                name, value = parsed
                if value.startswith("$"):
                    value = self.host_env.get(value[1:])
                    if value is None:
                        logger.debug(
                            "Specified an environment variable that doesn't "
                            f"exist, not applying tag: {item}"
                        )
                        continue
                tags.add(name, value.lower())
        return tags

    @staticmethod
    def tags_from_pipeline(pipeline_tags: tuple[str, ...] | list[str]) -> TagSet:
        """Parse tags declared by the pipeline."""
        return TagSet.from_items(tag.strip() for tag in pipeline_tags)

    def _resolve_reference(self, value: str, match: re.Match[str]) -> str | None:
        reference = value[1:]
        if reference[:1].isdigit():
            group = int(reference[0])
            if group <= match.re.groups:
                return match.group(group) or ""
        return self.host_env.get(reference)
