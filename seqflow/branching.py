"""
Experiment-type dispatch.

A workflow selects which of its subgraphs run from scalar sample metadata. The
selection happens once, before any task executes, and yields a :class:`BranchSet`
of active branch tags. Branch tags in the same exclusive group can never be
active together.
"""

import enum
from typing import Any, Dict, FrozenSet, Iterable, Iterator, Optional, Type, TypeVar

E = TypeVar("E", bound=enum.Enum)


class ValidationError(ValueError):
    """
    Invalid workflow inputs detected before any task runs.
    """

    pass


class Experiment(enum.Enum):
    """
    Sequencing experiment types.
    """

    WGS = "WGS"
    WES = "WES"
    RNA_SEQ = "RNA-Seq"
    CHIP_SEQ = "ChIP-Seq"

    def __str__(self) -> str:
        return self.value

    @property
    def branch_tag(self) -> str:
        return EXPERIMENT_BRANCHES[self]


# Experiments sharing a subgraph map to the same tag.
EXPERIMENT_BRANCHES: Dict[Experiment, str] = {
    Experiment.WGS: "wgs_wes",
    Experiment.WES: "wgs_wes",
    Experiment.RNA_SEQ: "rna_seq",
    Experiment.CHIP_SEQ: "chip_seq",
}

EXCLUSIVE_GROUPS: Dict[str, FrozenSet[str]] = {
    "experiment": frozenset(EXPERIMENT_BRANCHES.values()),
}


def parse_enum(enum_class: Type[E], value: Any, name: Optional[str] = None) -> E:
    """
    Parse a value into a member of `enum_class`.

    Members are accepted as themselves, by value (`"RNA-Seq"`), by name
    (`"RNA_SEQ"`) or by qualified name (`"Experiment.RNA_SEQ"`).
    """
    if isinstance(value, enum_class):
        return value

    if isinstance(value, str):
        for member in enum_class:
            if value in (member.value, member.name, f"{enum_class.__name__}.{member.name}"):
                return member

    allowed = ", ".join(repr(member.value) for member in enum_class)
    raise ValidationError(
        f"Invalid {name or enum_class.__name__} {value!r}. Expected one of: {allowed}"
    )


def parse_experiment(value: Any) -> Experiment:
    return parse_enum(Experiment, value, name="experiment")


class BranchSet:
    """
    The set of branch tags activated for one workflow invocation.
    """

    def __init__(self, tags: Iterable[str]):
        self.tags: FrozenSet[str] = frozenset(tags)

        for group, group_tags in EXCLUSIVE_GROUPS.items():
            active = sorted(self.tags & group_tags)
            if len(active) > 1:
                raise ValidationError(
                    f"Branches {', '.join(active)} of group '{group}' are mutually exclusive."
                )

    def __repr__(self) -> str:
        return "BranchSet({})".format(", ".join(sorted(self.tags)))

    def __contains__(self, tag: str) -> bool:
        return tag in self.tags

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.tags))

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, BranchSet) and self.tags == other.tags

    def __hash__(self) -> int:
        return hash(self.tags)

    def is_active(self, tag: str) -> bool:
        return tag in self.tags

    def exclusive_tag(self, group: str) -> Optional[str]:
        """
        Returns the active tag of an exclusive group, if any.
        """
        active = self.tags & EXCLUSIVE_GROUPS[group]
        return next(iter(active)) if active else None


def select_branches(
    experiment: Any,
    gtf: Optional[Any] = None,
    **steps: bool,
) -> BranchSet:
    """
    Determine the active branches for an invocation.

    Parameters
    ----------
    experiment : Experiment or str
        The experiment type. Anything outside of :class:`Experiment` is a
        validation error.
    gtf : Optional[File]
        Feature annotation for the sample. Required for RNA-Seq.
    **steps : bool
        Optional steps (e.g. `subsample=True`). Each true step becomes an active tag.
    """
    experiment = parse_experiment(experiment)

    if experiment == Experiment.RNA_SEQ and not gtf:
        raise ValidationError("RNA-Seq experiments require a gene model (gtf).")

    tags = {experiment.branch_tag}
    for step, enabled in steps.items():
        if step in EXCLUSIVE_GROUPS["experiment"]:
            raise ValidationError(f"Step name '{step}' clashes with an experiment branch.")
        if enabled:
            tags.add(step)

    return BranchSet(tags)
