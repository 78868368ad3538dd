from abc import ABC, abstractmethod
import inspect
import logging
import math
from typing import Callable, Generic, Optional, Type, TypeVar

import numpy as np

logger = logging.getLogger(__name__)

G = TypeVar('G')

EPS = 1e-6
DYNAMIC = -1
DEFAULT_EXPM_ORDER = 7

TangentVector = np.ndarray
Jacobian = np.ndarray
ChartJacobian = Optional[np.ndarray]


class DynamicDimensionError(TypeError):
    pass


class ConceptError(TypeError):
    pass


# Structure categories
class ManifoldTag:
    pass


class GroupTag:
    pass


class LieGroupTag(ManifoldTag, GroupTag):
    pass


class MultiplicativeGroupTag:
    pass


class AdditiveGroupTag:
    pass


def _is_fixed_dimension(n) -> bool:
    return isinstance(n, (int, np.integer)) and not isinstance(n, bool) and n >= 1


def _assign(H: ChartJacobian, value: np.ndarray) -> None:
    if H is None:
        return
    assert isinstance(H, np.ndarray), f"Jacobian slot must be np.ndarray, got {type(H)}"
    assert H.shape == value.shape, f"Jacobian slot must have shape {value.shape}, got {H.shape}"
    H[...] = value


class LieGroup(ABC):
    """
    Mixin implementing the Lie group operations of an element class.

    Subclasses supply ``__mul__``, ``__invert__``, ``adjoint``, ``identity``,
    ``Expmap``, ``Logmap`` and a nested ``ChartAtOrigin`` with ``Retract`` and
    ``Local``. Jacobians follow the right-perturbation convention: ``H`` is such
    that ``f(x * Exp(d)) ~ f(x) * Exp(H @ d)``.
    """
    N: int

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if not hasattr(cls, "N"):
            return
        if not _is_fixed_dimension(cls.N):
            raise DynamicDimensionError(
                f"{cls.__name__}: LieGroup not yet specialized for dynamically sized types.")
        own = cls.__dict__.get("Traits")
        if isinstance(own, type) and issubclass(own, LieGroupTraits):
            if own.__dict__.get("group") is None:
                # A Traits declared in the class body cannot name the class yet.
                own.group = cls
                own._specialize()
            return
        inherited = getattr(cls, "Traits", None)
        if not (isinstance(inherited, type) and issubclass(inherited, LieGroupTraits)):
            inherited = LieGroupTraits
        namespace = {"group": cls}
        if "group_flavor" in cls.__dict__:
            namespace["group_flavor"] = cls.group_flavor
        cls.Traits = type(f"{cls.__name__}Traits", (inherited,), namespace)

    @classmethod
    @abstractmethod
    def identity(cls):
        pass

    @abstractmethod
    def __mul__(self, other):
        pass

    @abstractmethod
    def __invert__(self):
        pass

    @abstractmethod
    def adjoint(self) -> np.ndarray:
        pass

    @classmethod
    @abstractmethod
    def Expmap(cls, v: TangentVector, H: ChartJacobian = None):
        pass

    @classmethod
    @abstractmethod
    def Logmap(cls, g, H: ChartJacobian = None) -> TangentVector:
        pass

    @classmethod
    def _check_tangent(cls, v: np.ndarray) -> None:
        assert isinstance(v, np.ndarray), f"tangent vector must be np.ndarray, got {type(v)}"
        assert v.shape == (cls.N,), f"tangent vector must have shape ({cls.N},), got {v.shape}"

    def compose(self, g, H1: ChartJacobian = None, H2: ChartJacobian = None):
        if H1 is not None:
            _assign(H1, (~g).adjoint())
        _assign(H2, np.eye(self.N))
        return self * g

    def between(self, g, H1: ChartJacobian = None, H2: ChartJacobian = None):
        result = ~self * g
        if H1 is not None:
            _assign(H1, -(~result).adjoint())
        _assign(H2, np.eye(self.N))
        return result

    def inverse(self, H: ChartJacobian = None):
        if H is not None:
            _assign(H, -self.adjoint())
        return ~self

    def expmap(self, v: TangentVector):
        return self.compose(type(self).Expmap(v))

    def logmap(self, g) -> TangentVector:
        return type(self).Logmap(self.between(g))

    def retract(self, v: TangentVector, H1: ChartJacobian = None, H2: ChartJacobian = None):
        self._check_tangent(v)
        chart = type(self).ChartAtOrigin
        if H2 is None:
            return self.compose(chart.Retract(v), H1)
        D_g_v = np.zeros((self.N, self.N))
        g = chart.Retract(v, D_g_v)
        h = self.compose(g, H1, H2)
        H2[...] = H2 @ D_g_v
        return h

    def local_coordinates(self, g, H1: ChartJacobian = None,
                          H2: ChartJacobian = None) -> TangentVector:
        chart = type(self).ChartAtOrigin
        h = self.between(g, H1, H2)
        if H1 is None and H2 is None:
            return chart.Local(h)
        D_v_h = np.zeros((self.N, self.N))
        v = chart.Local(h, D_v_h)
        if H1 is not None:
            H1[...] = D_v_h @ H1
        if H2 is not None:
            H2[...] = D_v_h @ H2
        return v

    def distance(self, other) -> float:
        return float(np.linalg.norm(self.logmap(other)))

    def isclose(self, other, atol=1e-5) -> bool:
        return self.distance(other) < atol

    def equals(self, other, tol=1e-9) -> bool:
        return isinstance(other, type(self)) and self.distance(other) <= tol


class LieGroupTraits(Generic[G]):
    """
    Uniform static surface over a Lie group type.

    A specialization binds ``group``; the default one forwards to the
    ``LieGroup`` mixin. Types that do not derive from the mixin conform by
    defining their own ``Traits`` subclass.
    """
    structure_category = LieGroupTag
    group_flavor = MultiplicativeGroupTag
    group: Type[G]
    dimension: int

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if cls.__dict__.get("group") is not None:
            cls._specialize()

    @classmethod
    def _specialize(cls) -> None:
        n = cls.__dict__.get("dimension", getattr(cls.group, "N", getattr(cls, "dimension", DYNAMIC)))
        if not _is_fixed_dimension(n):
            raise DynamicDimensionError(
                f"{cls.__name__}: LieGroupTraits not yet specialized for dynamically sized types.")
        cls.dimension = int(n)
        logger.debug("specialized %s for %s (dimension %d)", cls.__name__, cls.group.__name__, n)

    # Testable
    @classmethod
    def Equals(cls, m1: G, m2: G, tol: float = 1e-9) -> bool:
        return m1.equals(m2, tol)

    @classmethod
    def Print(cls, m: G, s: str = "") -> None:
        print(f"{s}{m!r}")

    # Group
    @classmethod
    def Identity(cls) -> G:
        return cls.group.identity()

    @classmethod
    def Compose(cls, m1: G, m2: G, H1: ChartJacobian = None, H2: ChartJacobian = None) -> G:
        if H1 is None and H2 is None:
            return m1 * m2
        return m1.compose(m2, H1, H2)

    @classmethod
    def Between(cls, m1: G, m2: G, H1: ChartJacobian = None, H2: ChartJacobian = None) -> G:
        if H1 is None and H2 is None:
            return ~m1 * m2
        return m1.between(m2, H1, H2)

    @classmethod
    def Inverse(cls, m: G, H: ChartJacobian = None) -> G:
        if H is None:
            return ~m
        return m.inverse(H)

    # Manifold
    @classmethod
    def GetDimension(cls, m: G) -> int:
        return cls.dimension

    @classmethod
    def Local(cls, origin: G, other: G, Horigin: ChartJacobian = None,
              Hother: ChartJacobian = None) -> TangentVector:
        return origin.local_coordinates(other, Horigin, Hother)

    @classmethod
    def Retract(cls, origin: G, v: TangentVector, Horigin: ChartJacobian = None,
                Hv: ChartJacobian = None) -> G:
        return origin.retract(v, Horigin, Hv)

    # Lie group
    @classmethod
    def Logmap(cls, m: G, Hm: ChartJacobian = None) -> TangentVector:
        return cls.group.Logmap(m, Hm)

    @classmethod
    def Expmap(cls, v: TangentVector, Hv: ChartJacobian = None) -> G:
        return cls.group.Expmap(v, Hv)


def traits(group_cls: type) -> Type[LieGroupTraits]:
    t = getattr(group_cls, "Traits", None)
    if isinstance(t, type) and issubclass(t, LieGroupTraits) and getattr(t, "group", None) is not None:
        return t
    raise TypeError(f"no LieGroupTraits specialization for {getattr(group_cls, '__name__', group_cls)!r}")


# Free functions that specific groups may shadow with faster versions.
def between_default(l1, l2):
    """Compute l0 such that l2 = l1 * l0."""
    return l1.inverse().compose(l2)


def logmap_default(l0, lp) -> TangentVector:
    """Log map centered at l0, such that expmap_default(l0, logmap_default(l0, lp)) = lp."""
    return type(l0).Logmap(l0.between(lp))


def expmap_default(t, d: TangentVector):
    """Exponential map centered at t: t * Exp(d)."""
    return t.compose(type(t).Expmap(d))


class _Concept:
    """
    Instantiates every operation of a traits surface for T. Construction
    raises ConceptError naming the first missing or misdeclared capability.
    """
    required_tag: type = object

    def __init__(self, T: type):
        self.T = T
        self.traits = self._resolve_traits(T)
        self._check_tag()
        self.g = self._call("Identity", self._op("Identity"))
        self.h = self.g
        self.check()

    def _resolve_traits(self, T):
        if inspect.isabstract(T):
            missing = ", ".join(sorted(T.__abstractmethods__))
            raise ConceptError(f"{T.__name__} does not implement: {missing}")
        try:
            return traits(T)
        except TypeError as e:
            raise ConceptError(str(e)) from e

    def _check_tag(self) -> None:
        category = getattr(self.traits, "structure_category", None)
        if not (isinstance(category, type) and issubclass(category, self.required_tag)):
            raise ConceptError(
                f"{self.T.__name__}: this type's trait does not assert it is a "
                f"{self.required_tag.__name__} (or derived)")

    def _call(self, name: str, fn: Callable, *args):
        try:
            return fn(*args)
        except Exception as e:
            raise ConceptError(f"{self.T.__name__}: {name} failed: {e!r}") from e

    def _op(self, name: str) -> Callable:
        fn = getattr(self.traits, name, None)
        if fn is None:
            raise ConceptError(f"{self.T.__name__}: traits are missing {name}")
        return fn

    def _element(self, name: str, value):
        if not isinstance(value, self.T):
            raise ConceptError(
                f"{self.T.__name__}: {name} returned {type(value).__name__}, expected {self.T.__name__}")
        return value

    def check(self) -> None:
        pass


class IsGroup(_Concept):
    required_tag = GroupTag

    def check(self) -> None:
        self._element("Identity", self.g)
        self._element("Compose", self._call("Compose", self._op("Compose"), self.g, self.h))
        self._element("Between", self._call("Between", self._op("Between"), self.g, self.h))
        self._element("Inverse", self._call("Inverse", self._op("Inverse"), self.g))
        if not hasattr(self.traits, "group_flavor"):
            raise ConceptError(f"{self.T.__name__}: traits do not declare a group_flavor")


class IsManifold(_Concept):
    required_tag = ManifoldTag

    def _slot(self) -> np.ndarray:
        return np.full((self.n, self.n), np.nan)

    def _tangent(self, name: str, value) -> np.ndarray:
        if not isinstance(value, np.ndarray) or value.shape != (self.n,):
            raise ConceptError(
                f"{self.T.__name__}: {name} must return a tangent vector of shape ({self.n},)")
        return value

    def _filled(self, name: str, H: np.ndarray) -> None:
        if not np.all(np.isfinite(H)):
            raise ConceptError(f"{self.T.__name__}: {name} did not write its Jacobian")

    def check(self) -> None:
        self.n = getattr(self.traits, "dimension", DYNAMIC)
        if not _is_fixed_dimension(self.n):
            raise ConceptError(f"{self.T.__name__}: manifold dimension is not fixed")
        if self._call("GetDimension", self._op("GetDimension"), self.g) != self.n:
            raise ConceptError(f"{self.T.__name__}: GetDimension disagrees with dimension")
        local, retract = self._op("Local"), self._op("Retract")
        v = np.zeros(self.n)
        self._tangent("Local", self._call("Local", local, self.g, self.h))
        self._element("Retract", self._call("Retract", retract, self.g, v))
        Hg, Hh = self._slot(), self._slot()
        self._tangent("Local", self._call("Local", local, self.g, self.h, Hg, Hh))
        self._filled("Local", Hg)
        self._filled("Local", Hh)
        Hg, Hv = self._slot(), self._slot()
        self._element("Retract", self._call("Retract", retract, self.g, v, Hg, Hv))
        self._filled("Retract", Hg)
        self._filled("Retract", Hv)


class IsLieGroup(IsGroup, IsManifold):
    """Lie group concept: group and manifold checks plus the Jacobian-bearing operations."""
    required_tag = LieGroupTag

    def check(self) -> None:
        IsGroup.check(self)
        IsManifold.check(self)
        g, h, v = self.g, self.h, np.zeros(self.n)

        for name in ("Compose", "Between"):
            Hg, Hh = self._slot(), self._slot()
            self._element(name, self._call(name, self._op(name), g, h, Hg, Hh))
            self._filled(name, Hg)
            self._filled(name, Hh)
        Hg = self._slot()
        self._element("Inverse", self._call("Inverse", self._op("Inverse"), g, Hg))
        self._filled("Inverse", Hg)

        expmap, logmap = self._op("Expmap"), self._op("Logmap")
        self._element("Expmap", self._call("Expmap", expmap, v))
        self._tangent("Logmap", self._call("Logmap", logmap, g))
        Hg = self._slot()
        self._element("Expmap", self._call("Expmap", expmap, v, Hg))
        self._filled("Expmap", Hg)
        Hg = self._slot()
        self._tangent("Logmap", self._call("Logmap", logmap, g, Hg))
        self._filled("Logmap", Hg)
        logger.debug("%s satisfies the Lie group concept", self.T.__name__)


def lie_concept(cls):
    """Class decorator asserting at definition time that cls is a Lie group."""
    IsLieGroup(cls)
    return cls


def BCH(X, Y, bracket: Optional[Callable] = None):
    """
    Three term approximation of the Baker-Campbell-Hausdorff formula.

    For exp(Z) = exp(X) exp(Y) in a non-commutative group Z != X + Y; instead
    Z = X + Y + [X,Y]/2 + [X-Y,[X,Y]]/12 - [Y,[X,[X,Y]]]/24.
    ``bracket`` is the Lie bracket of the algebra; it defaults to the matrix
    commutator when X and Y are square matrices.
    """
    if bracket is None:
        if np.ndim(X) != 2 or np.shape(X)[0] != np.shape(X)[1]:
            raise TypeError("BCH needs a bracket unless X and Y are square matrices")
        bracket = matrix_bracket
    X_Y = bracket(X, Y)
    return X + Y + X_Y / 2 + bracket(X - Y, X_Y) / 12 - bracket(Y, bracket(X, X_Y)) / 24


def matrix_bracket(A: np.ndarray, B: np.ndarray) -> np.ndarray:
    return A @ B - B @ A


def wedge(T: type, x: np.ndarray) -> np.ndarray:
    """Map n exponential coordinates to the n*n Lie algebra element of T."""
    hat = getattr(T, "hat", None)
    if hat is None:
        raise TypeError(f"{T.__name__} does not define hat(), no wedge available")
    return np.asarray(hat(np.asarray(x, dtype=float)))


def matrix_expm(A: np.ndarray, K: int = DEFAULT_EXPM_ORDER) -> np.ndarray:
    """Truncated series I + A + A^2/2! + ... + A^K/K!."""
    assert A.ndim == 2 and A.shape[0] == A.shape[1], f"expm needs a square matrix, got {A.shape}"
    E = np.eye(A.shape[0])
    A_k = np.eye(A.shape[0])
    for k in range(1, K + 1):
        A_k = A_k @ A
        E = E + A_k / math.factorial(k)
    return E


def expm(T: type, x: np.ndarray, K: int = DEFAULT_EXPM_ORDER):
    """
    Exponential map given exponential coordinates, for any T with a hat()
    and a constructor from its matrix representation.
    """
    return T(matrix_expm(wedge(T, x), K))
