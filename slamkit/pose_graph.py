"""Pose graph optimisation with poses on SE(3) updated through their Lie algebra.

Graphs are read and written in the ``VERTEX_SE3:QUAT`` / ``EDGE_SE3:QUAT``
text format, with quaternions stored as ``qx qy qz qw`` and the upper triangle
of each edge's 6x6 information matrix.
"""

from __future__ import annotations

import argparse
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve

from slamkit.lie import SE3

VERTEX_TAG = "VERTEX_SE3:QUAT"
EDGE_TAG = "EDGE_SE3:QUAT"
_TAU = 1e-5
_UPPER = list(zip(*np.triu_indices(6)))


def jr_inv(error: SE3) -> np.ndarray:
    """Inverse right Jacobian used when linearising an edge.

    Its first-order approximation is replaced by the identity, which is
    accurate when the edge error is small.
    """
    if not isinstance(error, SE3):
        raise TypeError("error must be an SE3")
    return np.eye(6)


@dataclass(eq=False)
class PoseVertex:
    """A pose to estimate; fixed vertices are held constant."""

    id: int
    estimate: SE3 = field(default_factory=SE3)
    fixed: bool = False


@dataclass(eq=False)
class PoseEdge:
    """A measured relative motion from one vertex to another."""

    id: int
    vertex_from: int
    vertex_to: int
    measurement: SE3
    information: np.ndarray = field(default_factory=lambda: np.eye(6))

    def __post_init__(self) -> None:
        info = np.asarray(self.information, dtype=float)
        if info.shape != (6, 6):
            raise ValueError("information must be 6x6")
        self.information = info


def _accumulate(rows, cols, data, b, blocks, omega, err) -> None:
    for oi, ji in blocks:
        b[oi : oi + ji.shape[1]] += ji.T @ omega @ err
        for oj, jj in blocks:
            block = ji.T @ omega @ jj
            r = np.arange(oi, oi + block.shape[0])
            c = np.arange(oj, oj + block.shape[1])
            rows.append(np.repeat(r, len(c)))
            cols.append(np.tile(c, len(r)))
            data.append(block.ravel())


def _levenberg_marquardt(
    linearize: Callable, cost: Callable[[], float], step: Callable, iterations: int
) -> List[float]:
    if iterations <= 0:
        return []
    H, b, chi2 = linearize()
    n = H.shape[0]
    if n == 0:
        return []
    diag = H.diagonal()
    top = float(diag.max()) if diag.size else 0.0
    damping = _TAU * top if top > 0 else _TAU
    factor = 2.0
    identity = sparse.identity(n, format="csc")
    history: List[float] = []
    for _ in range(iterations):
        accepted = False
        new_chi2 = chi2
        for _attempt in range(10):
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                dx = np.atleast_1d(spsolve((H + damping * identity).tocsc(), -b))
            if not np.all(np.isfinite(dx)):
                damping *= factor
                factor *= 2.0
                continue
            undo = step(dx)
            new_chi2 = cost()
            scale = float(dx @ (damping * dx - b)) + 1e-3
            rho = (chi2 - new_chi2) / scale
            if np.isfinite(new_chi2) and rho > 0:
                damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                factor = 2.0
                accepted = True
                break
            undo()
            damping *= factor
            factor *= 2.0
        if not accepted:
            break
        history.append(new_chi2)
        H, b, chi2 = linearize()
    return history


class PoseGraph:
    """Vertices keyed by id and the edges between them."""

    def __init__(self):
        self.vertices: Dict[int, PoseVertex] = {}
        self.edges: List[PoseEdge] = []

    def add_vertex(self, vertex: PoseVertex) -> None:
        if vertex.id in self.vertices:
            raise ValueError(f"vertex {vertex.id} already exists")
        self.vertices[vertex.id] = vertex

    def add_edge(self, edge: PoseEdge) -> None:
        for vid in (edge.vertex_from, edge.vertex_to):
            if vid not in self.vertices:
                raise ValueError(f"edge {edge.id} refers to unknown vertex {vid}")
        self.edges.append(edge)

    def edge_error(self, edge: PoseEdge) -> np.ndarray:
        """``log(measurement^-1 * T_from^-1 * T_to)``."""
        v1 = self.vertices[edge.vertex_from].estimate
        v2 = self.vertices[edge.vertex_to].estimate
        return (edge.measurement.inverse() * v1.inverse() * v2).log()

    def total_error(self) -> float:
        """Sum over edges of ``e^T * information * e``."""
        total = 0.0
        for edge in self.edges:
            err = self.edge_error(edge)
            total += float(err @ edge.information @ err)
        return total

    def _linearize(self, offsets: Dict[int, int], n: int):
        rows, cols, data = [], [], []
        b = np.zeros(n)
        chi2 = 0.0
        for edge in self.edges:
            err = self.edge_error(edge)
            chi2 += float(err @ edge.information @ err)
            J = jr_inv(SE3.exp(err))
            adj = self.vertices[edge.vertex_to].estimate.inverse().adjoint()
            blocks = [
                (offsets[vid], jac)
                for vid, jac in ((edge.vertex_from, -J @ adj), (edge.vertex_to, J @ adj))
                if vid in offsets
            ]
            _accumulate(rows, cols, data, b, blocks, edge.information, err)
        if rows:
            H = sparse.coo_matrix(
                (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))), shape=(n, n)
            ).tocsc()
        else:
            H = sparse.csc_matrix((n, n))
        return H, b, chi2

    def optimize(self, iterations: int = 30) -> List[float]:
        """Levenberg-Marquardt over the free vertices; returns the error after each iteration."""
        free = [v for v in self.vertices.values() if not v.fixed]
        if not free or not self.edges:
            return []
        offsets = {v.id: 6 * i for i, v in enumerate(free)}
        n = 6 * len(free)

        def step(dx):
            saved = [v.estimate for v in free]
            for v in free:
                o = offsets[v.id]
                v.estimate = SE3.exp(dx[o : o + 6]) * v.estimate

            def undo():
                for v, estimate in zip(free, saved):
                    v.estimate = estimate

            return undo

        return _levenberg_marquardt(lambda: self._linearize(offsets, n), self.total_error, step, iterations)

    def write(self, stream) -> None:
        """Write all vertices, then all edges, in the text format."""

        def fmt(values) -> str:
            return " ".join(repr(float(v)) for v in values)

        for v in self.vertices.values():
            w, x, y, z = v.estimate.unit_quaternion()
            stream.write(f"{VERTEX_TAG} {v.id} {fmt(v.estimate.translation)} {fmt((x, y, z, w))}\n")
        for e in self.edges:
            w, x, y, z = e.measurement.unit_quaternion()
            info = [e.information[i, j] for i, j in _UPPER]
            stream.write(
                f"{EDGE_TAG} {e.vertex_from} {e.vertex_to} "
                f"{fmt(e.measurement.translation)} {fmt((x, y, z, w))} {fmt(info)}\n"
            )


def _pose(values) -> SE3:
    tx, ty, tz, qx, qy, qz, qw = values
    return SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz))


def load_pose_graph(path) -> PoseGraph:
    """Read a pose graph file; vertex 0 is fixed. Other record types are ignored."""
    graph = PoseGraph()
    edge_count = 0
    with Path(path).open("r", encoding="utf-8") as stream:
        for number, line in enumerate(stream, start=1):
            fields = line.split()
            if not fields:
                continue
            try:
                if fields[0] == VERTEX_TAG:
                    if len(fields) < 9:
                        raise ValueError("vertex needs an id and 7 values")
                    index = int(fields[1])
                    graph.add_vertex(PoseVertex(index, _pose(float(f) for f in fields[2:9]), index == 0))
                elif fields[0] == EDGE_TAG:
                    if len(fields) < 10:
                        raise ValueError("edge needs two ids and 7 values")
                    info = np.eye(6)
                    for (i, j), value in zip(_UPPER, fields[10:31]):
                        info[i, j] = info[j, i] = float(value)
                    graph.add_edge(
                        PoseEdge(
                            edge_count,
                            int(fields[1]),
                            int(fields[2]),
                            _pose(float(f) for f in fields[3:10]),
                            info,
                        )
                    )
                    edge_count += 1
            except ValueError as exc:
                raise ValueError(f"{path}:{number}: {exc}") from None
    return graph


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="pose_graph", description="Optimise a pose graph.")
    parser.add_argument("graph", nargs="?", help="pose graph file, e.g. sphere.g2o")
    parser.add_argument("--output", default="result_lie.g2o")
    parser.add_argument("--iterations", type=int, default=30)
    args = parser.parse_args(argv)

    if args.graph is None:
        print("Usage: pose_graph sphere.g2o")
        return 1
    if not Path(args.graph).is_file():
        print(f"file {args.graph} does not exist.")
        return 1
    try:
        graph = load_pose_graph(args.graph)
    except ValueError as exc:
        print(f"error: {exc}")
        return 1

    print(f"read total {len(graph.vertices)} vertices, {len(graph.edges)} edges.")
    print("optimizing ...")
    print(f"initial chi2= {graph.total_error():g}")
    for iteration, chi2 in enumerate(graph.optimize(args.iterations)):
        print(f"iteration= {iteration}\t chi2= {chi2:g}")
    print("saving optimization results ...")
    with open(args.output, "w", encoding="utf-8") as stream:
        graph.write(stream)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())