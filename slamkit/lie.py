"""Rotations and rigid-body motions: the SO(3) and SE(3) groups and their algebras.

Quaternions are given and returned as ``(w, x, y, z)`` with the real part first.
The tangent vector of SE(3) is ordered translation first, rotation second.
"""

from __future__ import annotations

import numpy as np

_SMALL = 1e-10
_ORTHO_TOL = 1e-6


def _vector(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have {size} elements, got shape {np.shape(value)}")
    return arr


def _square(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float)
    if arr.shape != (size, size):
        raise ValueError(f"{name} must be {size}x{size}, got shape {arr.shape}")
    return arr


def hat(omega) -> np.ndarray:
    """Skew-symmetric matrix of a 3-vector."""
    x, y, z = _vector(omega, 3, "omega")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def vee(matrix) -> np.ndarray:
    """3-vector of a skew-symmetric matrix."""
    m = _square(matrix, 3, "matrix")
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def se3_hat(xi) -> np.ndarray:
    """4x4 twist matrix of a 6-vector (translation, rotation)."""
    xi = _vector(xi, 6, "xi")
    m = np.zeros((4, 4))
    m[:3, :3] = hat(xi[3:])
    m[:3, 3] = xi[:3]
    return m


def se3_vee(matrix) -> np.ndarray:
    """6-vector (translation, rotation) of a 4x4 twist matrix."""
    m = _square(matrix, 4, "matrix")
    return np.concatenate((m[:3, 3], vee(m[:3, :3])))


def quaternion_to_matrix(quaternion) -> np.ndarray:
    """Rotation matrix of a quaternion ``(w, x, y, z)``; the quaternion is normalised first."""
    q = _vector(quaternion, 4, "quaternion")
    norm = np.linalg.norm(q)
    if norm == 0.0:
        raise ValueError("quaternion must not be zero")
    w, x, y, z = q / norm
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def matrix_to_quaternion(matrix) -> np.ndarray:
    """Unit quaternion ``(w, x, y, z)`` of a rotation matrix."""
    m = _square(matrix, 3, "matrix")
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        s = np.sqrt(trace + 1.0)
        w = 0.5 * s
        s = 0.5 / s
        q = np.array([w, (m[2, 1] - m[1, 2]) * s, (m[0, 2] - m[2, 0]) * s, (m[1, 0] - m[0, 1]) * s])
    else:
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        s = np.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        imag = np.zeros(3)
        imag[i] = 0.5 * s
        s = 0.5 / s
        imag[j] = (m[j, i] + m[i, j]) * s
        imag[k] = (m[k, i] + m[i, k]) * s
        q = np.array([(m[k, j] - m[j, k]) * s, *imag])
    return q / np.linalg.norm(q)


def angle_axis_to_matrix(angle: float, axis) -> np.ndarray:
    """Rotation matrix for a rotation of ``angle`` radians about ``axis``."""
    axis = _vector(axis, 3, "axis")
    norm = np.linalg.norm(axis)
    if norm == 0.0:
        raise ValueError("axis must not be zero")
    k = hat(axis / norm)
    return np.eye(3) + np.sin(angle) * k + (1.0 - np.cos(angle)) * (k @ k)


def euler_angles_zyx(matrix) -> np.ndarray:
    """Yaw, pitch and roll of a rotation matrix, in Z-Y-X order."""
    m = _square(matrix, 3, "matrix")
    yaw = np.arctan2(m[1, 0], m[0, 0])
    c2 = np.hypot(m[2, 2], m[2, 1])
    if yaw < 0.0:
        yaw += np.pi
        pitch = np.arctan2(-m[2, 0], -c2)
    else:
        pitch = np.arctan2(-m[2, 0], c2)
    s1, c1 = np.sin(yaw), np.cos(yaw)
    roll = np.arctan2(s1 * m[0, 2] - c1 * m[1, 2], c1 * m[1, 1] - s1 * m[0, 1])
    return np.array([yaw, pitch, roll])


def _left_jacobian(phi: np.ndarray) -> np.ndarray:
    theta = np.linalg.norm(phi)
    k = hat(phi)
    if theta < _SMALL:
        return np.eye(3) + 0.5 * k + (k @ k) / 6.0
    return (
        np.eye(3)
        + (1.0 - np.cos(theta)) / theta**2 * k
        + (theta - np.sin(theta)) / theta**3 * (k @ k)
    )


def _transform_points(rotation: np.ndarray, translation: np.ndarray, other):
    try:
        arr = np.asarray(other, dtype=float)
    except (TypeError, ValueError):
        return None
    if arr.shape == (3,):
        return rotation @ arr + translation
    if arr.ndim == 2 and arr.shape[1] == 3:
        return arr @ rotation.T + translation
    return None


class SO3:
    """A 3D rotation."""

    __slots__ = ("_matrix",)

    def __init__(self, matrix=None):
        if matrix is None:
            self._matrix = np.eye(3)
            return
        m = _square(matrix, 3, "matrix")
        if not np.allclose(m.T @ m, np.eye(3), atol=_ORTHO_TOL) or np.linalg.det(m) <= 0.0:
            raise ValueError("matrix is not a rotation matrix")
        self._matrix = m.copy()

    @classmethod
    def _from_unnormalised(cls, matrix: np.ndarray) -> "SO3":
        result = cls.__new__(cls)
        result._matrix = quaternion_to_matrix(matrix_to_quaternion(matrix))
        return result

    @classmethod
    def from_quaternion(cls, quaternion) -> "SO3":
        result = cls.__new__(cls)
        result._matrix = quaternion_to_matrix(quaternion)
        return result

    @classmethod
    def exp(cls, omega) -> "SO3":
        omega = _vector(omega, 3, "omega")
        theta = np.linalg.norm(omega)
        if theta < _SMALL:
            real = 1.0 - theta * theta / 8.0
            factor = 0.5 - theta * theta / 48.0
        else:
            real = np.cos(0.5 * theta)
            factor = np.sin(0.5 * theta) / theta
        return cls.from_quaternion(np.concatenate(([real], factor * omega)))

    def log(self) -> np.ndarray:
        q = self.unit_quaternion()
        w, imag = q[0], q[1:]
        n2 = float(imag @ imag)
        if n2 < _SMALL * _SMALL:
            scale = 2.0 / w - 2.0 / 3.0 * n2 / w**3
        else:
            n = np.sqrt(n2)
            if abs(w) < _SMALL:
                scale = (np.pi if w > 0 else -np.pi) / n
            else:
                scale = 2.0 * np.arctan(n / w) / n
        return scale * imag

    def inverse(self) -> "SO3":
        result = SO3.__new__(SO3)
        result._matrix = self._matrix.T.copy()
        return result

    def unit_quaternion(self) -> np.ndarray:
        return matrix_to_quaternion(self._matrix)

    def matrix(self) -> np.ndarray:
        return self._matrix.copy()

    def __mul__(self, other):
        if isinstance(other, SO3):
            return SO3._from_unnormalised(self._matrix @ other._matrix)
        result = _transform_points(self._matrix, np.zeros(3), other)
        return NotImplemented if result is None else result

    def __repr__(self) -> str:
        return f"SO3({self._matrix.tolist()!r})"


class SE3:
    """A rigid-body motion: a rotation followed by a translation."""

    __slots__ = ("rotation", "translation")

    def __init__(self, rotation=None, translation=None):
        if rotation is None:
            rotation = SO3()
        elif not isinstance(rotation, SO3):
            rotation = SO3(rotation)
        self.rotation: SO3 = rotation
        self.translation: np.ndarray = (
            np.zeros(3) if translation is None else _vector(translation, 3, "translation").copy()
        )

    @classmethod
    def from_quaternion(cls, quaternion, translation) -> "SE3":
        return cls(SO3.from_quaternion(quaternion), translation)

    @classmethod
    def exp(cls, xi) -> "SE3":
        xi = _vector(xi, 6, "xi")
        rho, phi = xi[:3], xi[3:]
        return cls(SO3.exp(phi), _left_jacobian(phi) @ rho)

    def log(self) -> np.ndarray:
        phi = self.rotation.log()
        rho = np.linalg.solve(_left_jacobian(phi), self.translation)
        return np.concatenate((rho, phi))

    def inverse(self) -> "SE3":
        inv = self.rotation.inverse()
        return SE3(inv, -(inv * self.translation))

    def matrix(self) -> np.ndarray:
        m = np.eye(4)
        m[:3, :3] = self.rotation.matrix()
        m[:3, 3] = self.translation
        return m

    def matrix3x4(self) -> np.ndarray:
        return self.matrix()[:3, :]

    def adjoint(self) -> np.ndarray:
        r = self.rotation.matrix()
        adj = np.zeros((6, 6))
        adj[:3, :3] = r
        adj[:3, 3:] = hat(self.translation) @ r
        adj[3:, 3:] = r
        return adj

    def unit_quaternion(self) -> np.ndarray:
        return self.rotation.unit_quaternion()

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(self.rotation * other.rotation, self.rotation * other.translation + self.translation)
        result = _transform_points(self.rotation.matrix(), self.translation, other)
        return NotImplemented if result is None else result

    def __repr__(self) -> str:
        return f"SE3(rotation={self.rotation!r}, translation={self.translation.tolist()!r})"