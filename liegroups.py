import numpy as np
import quaternion
import scipy.linalg

from lie import EPS, AdditiveGroupTag, LieGroup, _assign

# Below this distance to pi the SO(3) log recovers the axis from the symmetric part.
NEAR_PI = 1e-3


def _skew(w: np.ndarray) -> np.ndarray:
    return np.array([
        [    0, -w[2],  w[1]],
        [ w[2],     0, -w[0]],
        [-w[1],  w[0],     0]
    ])


def _exponential_chart(group):
    class ChartAtOrigin:
        @staticmethod
        def Retract(v, H=None):
            return group.Expmap(v, H)

        @staticmethod
        def Local(g, H=None):
            return group.Logmap(g, H)

    return ChartAtOrigin


class ConformingGroup(LieGroup):
    """
    Sampling and normalization shared by the groups in this module. Each
    subclass gets the exponential chart at the origin unless it declares one.
    """

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if "ChartAtOrigin" not in cls.__dict__:
            cls.ChartAtOrigin = _exponential_chart(cls)

    @classmethod
    def randn(cls, *, scale: float = 1.0, cov: np.ndarray = None):
        if cov is not None:
            assert isinstance(cov, np.ndarray) and np.issubdtype(cov.dtype, np.floating)
            assert cov.shape == (cls.N, cls.N)
            v = np.random.multivariate_normal(np.zeros((cls.N,)), cov)
        else:
            v = np.random.randn(cls.N) * scale
        return cls.Expmap(v)

    @classmethod
    def randu(cls):
        raise NotImplementedError(f"{cls.__name__} must override randu() if it supports uniform sampling.")

    def normalize(self):
        """Default: no normalization needed."""
        return self


class MatrixLieGroup(ConformingGroup):
    """
    Groups stored as a square matrix M. Subclasses provide ``exp(v) -> M``,
    ``log(M) -> v`` and the left Jacobian of exp with its inverse; the right
    Jacobians used by Expmap/Logmap are the left ones evaluated at -v.
    """
    matrix_dim: int

    def __init__(self, M: np.ndarray):
        M = np.array(M, dtype=float)
        assert M.shape == (self.matrix_dim, self.matrix_dim), \
            f"{type(self).__name__} expects a {self.matrix_dim}x{self.matrix_dim} matrix, got {M.shape}"
        self.M = M

    def __repr__(self):
        return f"{type(self).__name__}(\n{self.M})"

    def __mul__(self, other):
        return type(self)(self.M @ other.M)

    def matrix(self) -> np.ndarray:
        return self.M

    def equals(self, other, tol=1e-9) -> bool:
        return isinstance(other, type(self)) and np.allclose(self.M, other.M, rtol=0.0, atol=tol)

    @classmethod
    def identity(cls):
        return cls(np.eye(cls.matrix_dim))

    @classmethod
    def Expmap(cls, v: np.ndarray, H: np.ndarray = None):
        cls._check_tangent(v)
        if H is not None:
            _assign(H, cls.left_jacobian(-v))
        return cls(cls.exp(v))

    @classmethod
    def Logmap(cls, X, H: np.ndarray = None) -> np.ndarray:
        v = cls.log(X.M)
        if H is not None:
            _assign(H, cls.left_jacobian_inverse(-v))
        return v

    @classmethod
    def _check_hat_input(cls, v: np.ndarray) -> None:
        assert isinstance(v, np.ndarray), f"hat input must be np.ndarray, got {type(v)}"
        assert v.shape == (cls.N,), f"hat expects shape ({cls.N},), got {v.shape}"

    @classmethod
    def _check_vee_output(cls, out: np.ndarray) -> None:
        assert out.shape == (cls.N,), f"vee must return shape ({cls.N},), got {out.shape}"

    def normalize(self):
        M = self.M.copy()
        U, _, Vt = np.linalg.svd(M[:self.rotation_dim, :self.rotation_dim])
        R = U @ Vt
        if np.linalg.det(R) < 0:
            U[:, -1] *= -1
            R = U @ Vt
        M[:self.rotation_dim, :self.rotation_dim] = R
        return type(self)(M)


class SO2(MatrixLieGroup):
    N: int = 1
    matrix_dim = 2
    rotation_dim = 2

    def __invert__(self):
        return type(self)(self.M.T)

    def adjoint(self) -> np.ndarray:
        return np.eye(1)

    @classmethod
    def hat(cls, w: np.ndarray) -> np.ndarray:
        cls._check_hat_input(w)
        return np.array([
            [   0, -w[0]],
            [w[0],     0],
        ])

    @classmethod
    def vee(cls, wx: np.ndarray) -> np.ndarray:
        w = np.array([wx[1, 0]])
        cls._check_vee_output(w)
        return w

    @classmethod
    def exp(cls, w: np.ndarray) -> np.ndarray:
        theta = w[0]
        return np.array([
            [np.cos(theta), -np.sin(theta)],
            [np.sin(theta),  np.cos(theta)]
        ])

    @classmethod
    def log(cls, R: np.ndarray) -> np.ndarray:
        return np.array([np.arctan2(R[1, 0], R[0, 0])])

    # SO(2) is abelian, so both Jacobians of exp are the identity.
    @classmethod
    def left_jacobian(cls, w: np.ndarray) -> np.ndarray:
        return np.eye(1)

    @classmethod
    def left_jacobian_inverse(cls, w: np.ndarray) -> np.ndarray:
        return np.eye(1)

    @classmethod
    def lie_bracket(cls, w1: np.ndarray, w2: np.ndarray) -> np.ndarray:
        return np.zeros(1)

    @classmethod
    def randu(cls):
        return cls.Expmap(np.array([np.random.uniform(-np.pi, np.pi)]))


class SO3(MatrixLieGroup):
    N: int = 3
    matrix_dim = 3
    rotation_dim = 3

    def __invert__(self):
        return type(self)(self.M.T)

    def adjoint(self) -> np.ndarray:
        return self.M.copy()

    @classmethod
    def hat(cls, w: np.ndarray) -> np.ndarray:
        cls._check_hat_input(w)
        return _skew(w)

    @classmethod
    def vee(cls, wx: np.ndarray) -> np.ndarray:
        w = np.array([wx[2, 1], wx[0, 2], wx[1, 0]])
        cls._check_vee_output(w)
        return w

    @classmethod
    def exp(cls, w: np.ndarray) -> np.ndarray:
        theta = np.linalg.norm(w)
        if theta < EPS:
            wx = _skew(w)
            return np.eye(3) + wx + 0.5 * (wx @ wx)
        wxn = _skew(w / theta)
        return np.eye(3) + np.sin(theta) * wxn + (1 - np.cos(theta)) * (wxn @ wxn)

    @classmethod
    def log(cls, R: np.ndarray) -> np.ndarray:
        cos_theta = np.clip((np.trace(R) - 1) / 2, -1.0, 1.0)
        w_sin = cls.vee((R - R.T) / 2)
        sin_theta = np.linalg.norm(w_sin)
        theta = np.arctan2(sin_theta, cos_theta)
        if theta < EPS:
            return w_sin * (1 + theta ** 2 / 6)
        if theta > np.pi - NEAR_PI:
            S = (R + R.T) / 2 - cos_theta * np.eye(3)
            k = np.argmax(np.diag(S))
            axis = S[:, k] / np.linalg.norm(S[:, k])
            if np.dot(axis, w_sin) < 0:
                axis = -axis
            return theta * axis
        return (theta / sin_theta) * w_sin

    @classmethod
    def left_jacobian(cls, w: np.ndarray) -> np.ndarray:
        theta = np.linalg.norm(w)
        wx = _skew(w)
        if theta < EPS:
            return np.eye(3) + 0.5 * wx + (1.0 / 6.0) * (wx @ wx)
        return np.eye(3) + ((1 - np.cos(theta)) / (theta ** 2)) * wx \
            + ((theta - np.sin(theta)) / (theta ** 3)) * (wx @ wx)

    @classmethod
    def left_jacobian_inverse(cls, w: np.ndarray) -> np.ndarray:
        theta = np.linalg.norm(w)
        wx = _skew(w)
        if theta < EPS:
            return np.eye(3) - 0.5 * wx + (1.0 / 12.0) * (wx @ wx)
        half_cot = np.cos(theta / 2) / np.sin(theta / 2)
        return np.eye(3) - 0.5 * wx + (1.0 / (theta ** 2) - half_cot / (2 * theta)) * (wx @ wx)

    @classmethod
    def lie_bracket(cls, w1: np.ndarray, w2: np.ndarray) -> np.ndarray:
        return np.cross(w1, w2)

    @classmethod
    def randu(cls):
        return cls(quaternion.as_rotation_matrix(UnitQuat.randu().q))


class UnitQuat(ConformingGroup):
    """Rotations as unit quaternions; shares the SO(3) tangent space and Jacobians."""
    N: int = 3

    def __init__(self, q: np.quaternion):
        self.q = q

    def __repr__(self):
        return f"UnitQuat({self.q})"

    def __mul__(self, other):
        return type(self)(self.q * other.q)

    def __invert__(self):
        return type(self)(self.q.conj())

    def matrix(self) -> np.ndarray:
        return quaternion.as_rotation_matrix(self.q)

    def adjoint(self) -> np.ndarray:
        return self.matrix()

    def equals(self, other, tol=1e-9) -> bool:
        return isinstance(other, UnitQuat) and np.allclose(self.matrix(), other.matrix(), rtol=0.0, atol=tol)

    @classmethod
    def identity(cls):
        return cls(np.quaternion(1.0, 0.0, 0.0, 0.0))

    @classmethod
    def Expmap(cls, v: np.ndarray, H: np.ndarray = None):
        cls._check_tangent(v)
        theta = np.linalg.norm(v)
        if theta < EPS:
            c, s = 1 - theta ** 2 / 8, 0.5 - theta ** 2 / 48
        else:
            c, s = np.cos(theta / 2), np.sin(theta / 2) / theta
        if H is not None:
            _assign(H, SO3.left_jacobian(-v))
        return cls(np.quaternion(c, *(s * v)))

    @classmethod
    def Logmap(cls, X, H: np.ndarray = None) -> np.ndarray:
        q = X.q if X.q.w >= 0 else -X.q
        u = np.array([q.x, q.y, q.z])
        norm_u = np.linalg.norm(u)
        if norm_u < EPS:
            v = (2 / q.w) * u
        else:
            v = (2 * np.arctan2(norm_u, q.w) / norm_u) * u
        if H is not None:
            _assign(H, SO3.left_jacobian_inverse(-v))
        return v

    @classmethod
    def left_jacobian(cls, v: np.ndarray) -> np.ndarray:
        return SO3.left_jacobian(v)

    @classmethod
    def left_jacobian_inverse(cls, v: np.ndarray) -> np.ndarray:
        return SO3.left_jacobian_inverse(v)

    @classmethod
    def lie_bracket(cls, v1: np.ndarray, v2: np.ndarray) -> np.ndarray:
        return np.cross(v1, v2)

    @classmethod
    def randu(cls):
        u1, u2, u3 = np.random.uniform(0, 1, (3,))
        qw = np.sqrt(1 - u1) * np.sin(2 * np.pi * u2)
        qx = np.sqrt(1 - u1) * np.cos(2 * np.pi * u2)
        qy = np.sqrt(u1) * np.sin(2 * np.pi * u3)
        qz = np.sqrt(u1) * np.cos(2 * np.pi * u3)
        return cls(np.quaternion(qw, qx, qy, qz))

    def normalize(self):
        return type(self)(self.q / np.abs(self.q))


class SE2(MatrixLieGroup):
    """Planar rigid transforms, tangent ordered as (w, vx, vy)."""
    N: int = 3
    matrix_dim = 3
    rotation_dim = 2

    def __invert__(self):
        T = self.M
        return type(self)(np.vstack([
            np.hstack([T[:2, :2].T, -T[:2, :2].T @ T[:2, 2:3]]),
            np.array([[0, 0, 1]])
        ]))

    def adjoint(self) -> np.ndarray:
        T = self.M
        return np.vstack([
            np.array([[1, 0, 0]]),
            np.hstack([np.array([[T[1, 2], -T[0, 2]]]).T, T[:2, :2]])
        ])

    @classmethod
    def hat(cls, V: np.ndarray) -> np.ndarray:
        cls._check_hat_input(V)
        w = V[:1]
        v = V[1:]
        return np.array([
            [   0, -w[0], v[0]],
            [w[0],     0, v[1]],
            [0,        0,    0]
        ])

    @classmethod
    def vee(cls, Vx: np.ndarray) -> np.ndarray:
        V = np.array([Vx[1, 0], Vx[0, 2], Vx[1, 2]])
        cls._check_vee_output(V)
        return V

    @staticmethod
    def _V(theta: float):
        """V(theta) = [[A, -B], [B, A]] taking rho to the translation of exp, and dV/dtheta."""
        if np.abs(theta) < EPS:
            A, B = 1 - theta ** 2 / 6, theta / 2 - theta ** 3 / 24
            dA, dB = -theta / 3, 0.5 - theta ** 2 / 8
        else:
            s, c = np.sin(theta), np.cos(theta)
            A, B = s / theta, (1 - c) / theta
            dA = (theta * c - s) / theta ** 2
            dB = (theta * s - (1 - c)) / theta ** 2
        return np.array([[A, -B], [B, A]]), np.array([[dA, -dB], [dB, dA]])

    @classmethod
    def exp(cls, V: np.ndarray) -> np.ndarray:
        theta = V[0]
        G, _ = cls._V(theta)
        T = np.eye(3)
        T[:2, :2] = SO2.exp(V[:1])
        T[:2, 2] = G @ V[1:]
        return T

    @classmethod
    def log(cls, T: np.ndarray) -> np.ndarray:
        theta = np.arctan2(T[1, 0], T[0, 0])
        G, _ = cls._V(theta)
        return np.array([theta, *np.linalg.solve(G, T[:2, 2])])

    @classmethod
    def left_jacobian(cls, V: np.ndarray) -> np.ndarray:
        G, dG = cls._V(V[0])
        J = np.array([[0.0, -1.0], [1.0, 0.0]])
        q = (dG - J @ G) @ V[1:]
        JV = np.eye(3)
        JV[1:, 0] = q
        JV[1:, 1:] = G
        return JV

    @classmethod
    def left_jacobian_inverse(cls, V: np.ndarray) -> np.ndarray:
        JV = cls.left_jacobian(V)
        G_inv = np.linalg.inv(JV[1:, 1:])
        JV_inv = np.eye(3)
        JV_inv[1:, 0] = -G_inv @ JV[1:, 0]
        JV_inv[1:, 1:] = G_inv
        return JV_inv

    @classmethod
    def lie_bracket(cls, V1: np.ndarray, V2: np.ndarray) -> np.ndarray:
        V1x = cls.hat(V1)
        V2x = cls.hat(V2)
        return cls.vee(V1x @ V2x - V2x @ V1x)

    @classmethod
    def randu(cls, bounds: tuple = None):
        theta = np.random.uniform(-np.pi, np.pi)
        if bounds is None:
            xmin, xmax = 0.0, 1.0
            ymin, ymax = 0.0, 1.0
        else:
            if (not isinstance(bounds, tuple) or
                    len(bounds) != 2 or
                    not all(isinstance(b, tuple) and len(b) == 2 for b in bounds)):
                raise TypeError(
                    f"Bounds must be a tuple of two (min, max) tuples, e.g., ((xmin, xmax), (ymin, ymax)), got {bounds}"
                )
            (xmin, xmax), (ymin, ymax) = bounds
        T = np.eye(3)
        T[:2, :2] = SO2.exp(np.array([theta]))
        T[:2, 2] = [np.random.uniform(xmin, xmax), np.random.uniform(ymin, ymax)]
        return cls(T)


class SE3(MatrixLieGroup):
    """Rigid transforms, tangent ordered as (w, v)."""
    N: int = 6
    matrix_dim = 4
    rotation_dim = 3

    def __invert__(self):
        T = self.M
        return type(self)(np.vstack([
            np.hstack([T[:3, :3].T, -T[:3, :3].T @ T[:3, 3:4]]),
            np.array([[0, 0, 0, 1]])
        ]))

    def adjoint(self) -> np.ndarray:
        R = self.M[:3, :3]
        p = self.M[:3, 3]
        Adj = np.zeros((6, 6))
        Adj[:3, :3] = R
        Adj[3:, :3] = _skew(p) @ R
        Adj[3:, 3:] = R
        return Adj

    @classmethod
    def hat(cls, V: np.ndarray) -> np.ndarray:
        cls._check_hat_input(V)
        Vx = np.zeros((4, 4))
        Vx[:3, :3] = _skew(V[:3])
        Vx[:3, 3] = V[3:]
        return Vx

    @classmethod
    def vee(cls, Vx: np.ndarray) -> np.ndarray:
        V = np.array([Vx[2, 1], Vx[0, 2], Vx[1, 0], Vx[0, 3], Vx[1, 3], Vx[2, 3]])
        cls._check_vee_output(V)
        return V

    @classmethod
    def exp(cls, V: np.ndarray) -> np.ndarray:
        w, v = V[:3], V[3:]
        T = np.eye(4)
        T[:3, :3] = SO3.exp(w)
        T[:3, 3] = SO3.left_jacobian(w) @ v
        return T

    @classmethod
    def log(cls, T: np.ndarray) -> np.ndarray:
        w = SO3.log(T[:3, :3])
        v = SO3.left_jacobian_inverse(w) @ T[:3, 3]
        return np.hstack([w, v])

    @staticmethod
    def _Q(w: np.ndarray, v: np.ndarray) -> np.ndarray:
        """Coupling block of the SE(3) left Jacobian (Barfoot and Furgale, 2014)."""
        theta = np.linalg.norm(w)
        wx = _skew(w)
        vx = _skew(v)
        if theta < 1e-2:
            t2 = theta ** 2
            c1 = 1.0 / 6.0 - t2 / 120.0 + t2 ** 2 / 5040.0
            c2 = 1.0 / 24.0 - t2 / 720.0 + t2 ** 2 / 40320.0
            c3 = 1.0 / 120.0 - t2 / 2520.0
        else:
            s, c = np.sin(theta), np.cos(theta)
            c1 = (theta - s) / theta ** 3
            c2 = (theta ** 2 + 2 * c - 2) / (2 * theta ** 4)
            c3 = (2 * theta - 3 * s + theta * c) / (2 * theta ** 5)
        wv = wx @ vx
        vw = vx @ wx
        wvw = wv @ wx
        return 0.5 * vx \
            + c1 * (wv + vw + wvw) \
            + c2 * (wx @ wv + vw @ wx - 3 * wvw) \
            + c3 * (wvw @ wx + wx @ wvw)

    @classmethod
    def left_jacobian(cls, V: np.ndarray) -> np.ndarray:
        w, v = V[:3], V[3:]
        Jw = SO3.left_jacobian(w)
        JV = np.zeros((6, 6))
        JV[:3, :3] = Jw
        JV[3:, :3] = cls._Q(w, v)
        JV[3:, 3:] = Jw
        return JV

    @classmethod
    def left_jacobian_inverse(cls, V: np.ndarray) -> np.ndarray:
        w, v = V[:3], V[3:]
        Jw_inv = SO3.left_jacobian_inverse(w)
        JV_inv = np.zeros((6, 6))
        JV_inv[:3, :3] = Jw_inv
        JV_inv[3:, :3] = -Jw_inv @ cls._Q(w, v) @ Jw_inv
        JV_inv[3:, 3:] = Jw_inv
        return JV_inv

    @classmethod
    def lie_bracket(cls, V1: np.ndarray, V2: np.ndarray) -> np.ndarray:
        w_cross = np.cross(V1[:3], V2[:3])
        v_cross = np.cross(V1[:3], V2[3:]) - np.cross(V2[:3], V1[3:])
        return np.hstack([w_cross, v_cross])

    @classmethod
    def randu(cls, bounds: tuple = None):
        if bounds is None:
            bounds = ((0.0, 1.0), (0.0, 1.0), (0.0, 1.0))
        elif (not isinstance(bounds, tuple) or
                len(bounds) != 3 or
                not all(isinstance(b, tuple) and len(b) == 2 for b in bounds)):
            raise TypeError(
                f"bounds must be a tuple of three (min, max) tuples, e.g., ((xmin, xmax), (ymin, ymax), (zmin, zmax)), got {bounds}"
            )
        T = np.eye(4)
        T[:3, :3] = SO3.randu().M
        T[:3, 3] = [np.random.uniform(lo, hi) for lo, hi in bounds]
        return cls(T)


def RnAdd_factory(n: int):
    """Additive group R^n; hat() embeds it as translations in (n+1)x(n+1) matrices."""
    assert n >= 1

    class RnAdd(ConformingGroup):
        N: int = n
        group_flavor = AdditiveGroupTag

        def __init__(self, v: np.ndarray):
            v = np.array(v, dtype=float)
            if v.ndim == 2:
                v = v[:-1, -1]
            assert v.shape == (n,), f"R{n}Add expects shape ({n},), got {v.shape}"
            self.vector = v

        def __repr__(self):
            return f"R{n}Add({self.vector})"

        def __mul__(self, other):
            return type(self)(self.vector + other.vector)

        def __invert__(self):
            return type(self)(-self.vector)

        def adjoint(self) -> np.ndarray:
            return np.eye(n)

        def equals(self, other, tol=1e-9) -> bool:
            return isinstance(other, RnAdd) and np.allclose(self.vector, other.vector, rtol=0.0, atol=tol)

        @classmethod
        def identity(cls):
            return cls(np.zeros(n))

        @classmethod
        def Expmap(cls, v: np.ndarray, H: np.ndarray = None):
            cls._check_tangent(v)
            _assign(H, np.eye(n))
            return cls(v)

        @classmethod
        def Logmap(cls, x, H: np.ndarray = None) -> np.ndarray:
            _assign(H, np.eye(n))
            return x.vector.copy()

        @classmethod
        def hat(cls, v: np.ndarray) -> np.ndarray:
            vx = np.zeros((n + 1, n + 1))
            vx[:n, n] = v
            return vx

        @classmethod
        def vee(cls, vx: np.ndarray) -> np.ndarray:
            return vx[:n, n].copy()

        @classmethod
        def left_jacobian(cls, v: np.ndarray) -> np.ndarray:
            return np.eye(n)

        @classmethod
        def left_jacobian_inverse(cls, v: np.ndarray) -> np.ndarray:
            return np.eye(n)

        @classmethod
        def lie_bracket(cls, v1: np.ndarray, v2: np.ndarray) -> np.ndarray:
            return np.zeros(n)

        @classmethod
        def randu(cls):
            return cls(np.random.uniform(0, 1, size=(n,)))

    RnAdd.__name__ = RnAdd.__qualname__ = f"R{n}Add"
    return RnAdd


def product_groups_factory(*groups):
    """
    Factory function that creates a Lie group class for the Cartesian product
    of multiple Lie groups provided as arguments (e.g. G1 x G2 x G3 ...).

    Arguments:
    *groups -- Any number of Lie group classes.

    Returns:
    A new class whose elements hold one element per factor. Adjoints and
    Jacobians are block diagonal in the order of the factors.
    """
    assert len(groups) >= 1
    class_name = "x".join(Gi.__name__ for Gi in groups)
    cumdims = np.cumsum([0] + [Gi.N for Gi in groups])

    def split(v):
        return [v[cumdims[i]:cumdims[i + 1]] for i in range(len(groups))]

    def blockwise(fns, args, H):
        # Calls fns[i](args[i], H_i) and assembles the H_i block-diagonally into H.
        if H is None:
            return [fn(arg) for fn, arg in zip(fns, args)]
        blocks = [np.zeros((Gi.N, Gi.N)) for Gi in groups]
        out = [fn(arg, B) for fn, arg, B in zip(fns, args, blocks)]
        _assign(H, scipy.linalg.block_diag(*blocks))
        return out

    class ProductGroup(ConformingGroup):
        """Lie group representing the Cartesian product of the input groups."""
        N: int = int(cumdims[-1])
        factors = groups

        class ChartAtOrigin:
            @staticmethod
            def Retract(v, H=None):
                ProductGroup._check_tangent(v)
                return ProductGroup(*blockwise([Gi.ChartAtOrigin.Retract for Gi in groups], split(v), H))

            @staticmethod
            def Local(X, H=None):
                return np.concatenate(blockwise([Gi.ChartAtOrigin.Local for Gi in groups], X.parts, H))

        def __init__(self, *parts):
            assert len(parts) == len(groups), f"{class_name} expects {len(groups)} parts, got {len(parts)}"
            self.parts = tuple(parts)

        def __repr__(self):
            return f"{class_name}{self.parts}"

        def __mul__(self, other):
            return type(self)(*(x1 * x2 for x1, x2 in zip(self.parts, other.parts)))

        def __invert__(self):
            return type(self)(*(~x for x in self.parts))

        def adjoint(self) -> np.ndarray:
            return scipy.linalg.block_diag(*(x.adjoint() for x in self.parts))

        def equals(self, other, tol=1e-9) -> bool:
            return isinstance(other, ProductGroup) and \
                all(x.equals(y, tol) for x, y in zip(self.parts, other.parts))

        @classmethod
        def identity(cls):
            return cls(*(Gi.identity() for Gi in groups))

        @classmethod
        def Expmap(cls, v: np.ndarray, H: np.ndarray = None):
            cls._check_tangent(v)
            return cls(*blockwise([Gi.Expmap for Gi in groups], split(v), H))

        @classmethod
        def Logmap(cls, X, H: np.ndarray = None) -> np.ndarray:
            return np.concatenate(blockwise([Gi.Logmap for Gi in groups], X.parts, H))

        @classmethod
        def left_jacobian(cls, v: np.ndarray) -> np.ndarray:
            return scipy.linalg.block_diag(*(Gi.left_jacobian(p) for Gi, p in zip(groups, split(v))))

        @classmethod
        def left_jacobian_inverse(cls, v: np.ndarray) -> np.ndarray:
            return scipy.linalg.block_diag(*(Gi.left_jacobian_inverse(p) for Gi, p in zip(groups, split(v))))

        @classmethod
        def lie_bracket(cls, v: np.ndarray, w: np.ndarray) -> np.ndarray:
            return np.concatenate([Gi.lie_bracket(vi, wi) for Gi, vi, wi in zip(groups, split(v), split(w))])

        @classmethod
        def randu(cls):
            return cls(*(Gi.randu() for Gi in groups))

        def normalize(self):
            return type(self)(*(x.normalize() for x in self.parts))

    ProductGroup.__name__ = ProductGroup.__qualname__ = class_name
    return ProductGroup
