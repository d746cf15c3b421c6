"""Reading, writing and navigating trees with Bio.Phylo.

Trees travel between stages as Newick files, one tree per line. Node
support (bootstrap counts or posterior probabilities) is carried as clade
``confidence`` and written as the internal node label, so it survives every
write/read round trip. Other node comments are kept only where explicitly
written (the grafter's ``[&ti=<id>]`` tip annotation).
"""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Iterable
from io import StringIO
from pathlib import Path
from typing import TYPE_CHECKING

from supersmart.core.exceptions import EmptyInputFileError, MalformedInputError
from supersmart.core.io_utils import atomic_write, require_input

if TYPE_CHECKING:
    from Bio.Phylo.BaseTree import Clade, Tree

logger = logging.getLogger(__name__)

_PLAIN_LABEL = re.compile(r"^[\w.\-|]+$")
_TRANSLATE_BLOCK = re.compile(r"\btranslate\s+(.*?);", re.IGNORECASE | re.DOTALL)
_TREE_STATEMENT = re.compile(
    r"^\s*tree\s+[^=]+=\s*(.*?;)\s*$", re.IGNORECASE | re.MULTILINE
)
_COMMENT = re.compile(r"\[[^\]]*\]")
_POSTERIOR = re.compile(r"posterior=([0-9.eE+\-]+)")


# =============================================================================
# Newick
# =============================================================================


def parse_newick(text: str) -> Tree:
    """Parse a single Newick string."""
    from Bio import Phylo
    from Bio.Phylo.NewickIO import NewickError

    try:
        return Phylo.read(StringIO(text.strip()), "newick")
    except (ValueError, NewickError) as e:
        raise MalformedInputError("<newick string>", str(e)) from e


def _format_number(value: float) -> str:
    text = f"{value:.8f}".rstrip("0").rstrip(".")
    return text or "0"


def _format_label(name: str) -> str:
    if _PLAIN_LABEL.match(name):
        return name
    return "'" + name.replace("'", "''") + "'"


def to_newick(tree: Tree | Clade) -> str:
    """
    Serialize a tree (or subtree) to a single-line Newick string.

    Internal nodes carrying a confidence are labelled with it; otherwise
    their name, if any, is used. Comments are written as ``[comment]``
    after the branch length.
    """

    def render(clade: Clade) -> str:
        if clade.clades:
            text = "(" + ",".join(render(c) for c in clade.clades) + ")"
            if clade.confidence is not None:
                text += _format_number(float(clade.confidence))
            elif clade.name:
                text += _format_label(clade.name)
        else:
            text = _format_label(clade.name) if clade.name else ""
        if clade.branch_length is not None:
            text += ":" + _format_number(float(clade.branch_length))
        comment = getattr(clade, "comment", None)
        if comment:
            text += f"[{comment}]"
        return text

    root = tree.root if hasattr(tree, "root") else tree
    return render(root) + ";"


def read_trees(path: Path) -> list[Tree]:
    """
    Read all trees from a Newick or NEXUS file.

    Raises:
        MissingInputFileError: If the file does not exist.
        EmptyInputFileError: If the file holds no tree.
    """
    from Bio import Phylo
    from Bio.Phylo.NewickIO import NewickError

    require_input(path, "tree file")
    text = path.read_text()
    if text.lstrip().upper().startswith("#NEXUS"):
        trees = parse_nexus_trees(text)
    else:
        try:
            trees = list(Phylo.parse(StringIO(text), "newick"))
        except (ValueError, NewickError) as e:
            raise MalformedInputError(path, str(e)) from e
    if not trees:
        raise EmptyInputFileError(path, "tree file")
    return trees


def read_tree(path: Path) -> Tree:
    """Read the first tree of a file, warning if there are more."""
    trees = read_trees(path)
    if len(trees) > 1:
        logger.warning("%s holds %d trees, using the first", path, len(trees))
    return trees[0]


def write_trees(trees: Iterable[Tree], path: Path) -> int:
    """Write trees as Newick, one per line, atomically. Returns the count."""
    count = 0
    with atomic_write(path) as handle:
        for tree in trees:
            handle.write(to_newick(tree) + "\n")
            count += 1
    return count


# =============================================================================
# NEXUS
# =============================================================================


def parse_translate_table(text: str) -> dict[str, str]:
    """Parse the ``Translate`` block of a NEXUS trees block."""
    match = _TRANSLATE_BLOCK.search(text)
    if not match:
        return {}
    table = {}
    for entry in match.group(1).split(","):
        parts = entry.split(None, 1)
        if len(parts) == 2:
            table[parts[0].strip()] = parts[1].strip().strip("'\"")
    return table


def _posterior_comments_to_labels(newick: str) -> str:
    """Replace node comments by their posterior (internal nodes) or drop them."""

    def substitute(match: re.Match[str]) -> str:
        start = match.start()
        follows_internal = start > 0 and newick[start - 1] == ")"
        found = _POSTERIOR.findall(match.group(0))
        if len(found) > 1:
            logger.warning("More than one posterior in comment %s", match.group(0))
        if follows_internal and found:
            return found[0]
        return ""

    return _COMMENT.sub(substitute, newick)


def parse_nexus_trees(text: str) -> list[Tree]:
    """
    Parse the trees of a NEXUS document.

    Taxon numbers are mapped back to labels through the ``Translate``
    table. Posterior values in ``[&...posterior=x...]`` comments become the
    confidence of the internal node they annotate; all other comments
    (heights, rates, rooting flags) are dropped.
    """
    translate = parse_translate_table(text)
    trees = []
    for match in _TREE_STATEMENT.finditer(text):
        newick = _posterior_comments_to_labels(match.group(1).strip())
        tree = parse_newick(newick)
        if translate:
            for tip in tree.get_terminals():
                if tip.name in translate:
                    tip.name = translate[tip.name]
        trees.append(tree)
    return trees


def to_nexus(trees: Iterable[Tree]) -> str:
    """Serialize trees as a minimal NEXUS trees block (for TreeAnnotator)."""
    trees = list(trees)
    labels = sorted({t.name for tree in trees for t in tree.get_terminals() if t.name})
    lines = ["#NEXUS", "", "Begin taxa;", f"\tDimensions ntax={len(labels)};", "\tTaxlabels"]
    lines.extend(f"\t\t{_format_label(name)}" for name in labels)
    lines.extend(["\t\t;", "End;", "", "Begin trees;"])
    for i, tree in enumerate(trees, start=1):
        lines.append(f"\ttree TREE{i} = [&R] {to_newick(tree)}")
    lines.extend(["End;", ""])
    return "\n".join(lines)


# =============================================================================
# Navigation helpers
# =============================================================================


def copy_tree(tree: Tree) -> Tree:
    """Deep copy, so that transformations never touch their input."""
    return copy.deepcopy(tree)


def parent_map(tree: Tree) -> dict[Clade, Clade]:
    """Map each non-root clade to its parent."""
    return {child: parent for parent in tree.find_clades() for child in parent.clades}


def terminal_names(tree: Tree | Clade) -> list[str]:
    return [t.name for t in tree.get_terminals() if t.name]


def find_terminal(tree: Tree, name: str) -> Clade | None:
    for tip in tree.get_terminals():
        if tip.name == name:
            return tip
    return None


def mrca(tree: Tree, names: Iterable[str]) -> Clade | None:
    """MRCA of the named terminals; unknown names are ignored."""
    tips = [t for name in dict.fromkeys(names) if (t := find_terminal(tree, name)) is not None]
    if not tips:
        return None
    if len(tips) == 1:
        return tips[0]
    return tree.common_ancestor(*tips)


def subtree_height(clade: Clade) -> float:
    """Longest path from ``clade`` down to any of its tips."""
    if not clade.clades:
        return 0.0
    return max((c.branch_length or 0.0) + subtree_height(c) for c in clade.clades)


def nodes_to_root(tree: Tree, clade: Clade) -> int:
    """Number of edges between ``clade`` and the root."""
    path = tree.get_path(clade)
    return len(path) if path else 0


def strip_quotes(tree: Tree) -> None:
    """Remove single quotes that some tools add around labels."""
    for clade in tree.find_clades():
        if clade.name:
            clade.name = clade.name.replace("'", "")


def remove_internal_names(tree: Tree) -> None:
    """Clear non-numeric internal labels such as 'root' left by rerooting."""
    for clade in tree.get_nonterminals():
        if clade.name and re.search(r"[A-Za-z]", clade.name):
            clade.name = None
