import functools
import traceback

import numpy as np
import pytest
import scipy.linalg
from numpy.testing import assert_allclose

from lie import (DYNAMIC, BCH, ConceptError, DynamicDimensionError, IsGroup, IsLieGroup, IsManifold,
                 LieGroup, LieGroupTraits, ManifoldTag, between_default, expm, expmap_default,
                 lie_concept, logmap_default, matrix_expm, traits, wedge)
from liegroups import SE2, SE3, SO2, SO3, UnitQuat, RnAdd_factory, product_groups_factory
from numerical_derivative import numerical_derivative11, numerical_derivative21, numerical_derivative22

GROUP_CLASSES = [SO2, SO3, SE2, SE3, UnitQuat, RnAdd_factory(4),
                 product_groups_factory(SO3, RnAdd_factory(3)), product_groups_factory(SE2, SO2)]

N_REPEATS = 10


def repeat(n):
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for i in range(n):
                try:
                    func(*args, **kwargs)
                except AssertionError as e:
                    print("\n" + "="*60)
                    print(f"Repetition {i+1}/{n} failed for test: {func.__name__}")
                    print(f"Args: {args}")
                    print(f"Kwargs: {kwargs}")
                    print("Traceback:")
                    traceback.print_exc()
                    print("="*60 + "\n")
                    raise AssertionError(f"Failure on repetition {i+1}/{n}:\n{e}") from e
        return wrapper
    return decorator


def sample(G, scale=0.5):
    return G.Expmap(np.random.randn(G.N) * scale)


def assert_same(X, Y, atol=1e-8):
    assert X.equals(Y, atol), f"\n{X!r}\n!=\n{Y!r}"


# --- Mock groups for the concept checker ---

class Angle(LieGroup):
    N = 1

    class ChartAtOrigin:
        @staticmethod
        def Retract(v, H=None):
            return Angle.Expmap(v, H)

        @staticmethod
        def Local(a, H=None):
            return Angle.Logmap(a, H)

    def __init__(self, theta=0.0):
        self.theta = float(theta)

    def __mul__(self, other):
        return type(self)(self.theta + other.theta)

    def __invert__(self):
        return type(self)(-self.theta)

    def adjoint(self):
        return np.eye(1)

    @classmethod
    def identity(cls):
        return cls()

    @classmethod
    def Expmap(cls, v, H=None):
        if H is not None:
            H[...] = 1.0
        return cls(v[0])

    @classmethod
    def Logmap(cls, a, H=None):
        if H is not None:
            H[...] = 1.0
        return np.array([a.theta])


class AngleWithoutAdjoint(LieGroup):
    N = 1

    def __init__(self, theta=0.0):
        self.theta = theta

    def __mul__(self, other):
        return AngleWithoutAdjoint(self.theta + other.theta)

    def __invert__(self):
        return AngleWithoutAdjoint(-self.theta)

    @classmethod
    def identity(cls):
        return cls()

    @classmethod
    def Expmap(cls, v, H=None):
        return cls(v[0])

    @classmethod
    def Logmap(cls, a, H=None):
        return np.array([a.theta])


class AngleIgnoringLogmapJacobian(Angle):
    N = 1

    class ChartAtOrigin:
        @staticmethod
        def Retract(v, H=None):
            return AngleIgnoringLogmapJacobian.Expmap(v, H)

        @staticmethod
        def Local(a, H=None):
            return AngleIgnoringLogmapJacobian.Logmap(a, H)

    @classmethod
    def Logmap(cls, a, H=None):
        return np.array([a.theta])


class PositiveReal:
    """Multiplicative positive reals; conforms through its own traits, not the mixin."""

    def __init__(self, value=1.0):
        self.value = float(value)

    def __repr__(self):
        return f"PositiveReal({self.value})"


class PositiveRealTraits(LieGroupTraits):
    group = PositiveReal
    dimension = 1

    @classmethod
    def _write(cls, H, value):
        if H is not None:
            H[...] = value

    @classmethod
    def Equals(cls, m1, m2, tol=1e-9):
        return abs(m1.value - m2.value) <= tol

    @classmethod
    def Identity(cls):
        return cls.group(1.0)

    @classmethod
    def Compose(cls, m1, m2, H1=None, H2=None):
        cls._write(H1, 1.0)
        cls._write(H2, 1.0)
        return cls.group(m1.value * m2.value)

    @classmethod
    def Between(cls, m1, m2, H1=None, H2=None):
        cls._write(H1, -1.0)
        cls._write(H2, 1.0)
        return cls.group(m2.value / m1.value)

    @classmethod
    def Inverse(cls, m, H=None):
        cls._write(H, -1.0)
        return cls.group(1.0 / m.value)

    @classmethod
    def Local(cls, origin, other, Horigin=None, Hother=None):
        cls._write(Horigin, -1.0)
        cls._write(Hother, 1.0)
        return np.array([np.log(other.value / origin.value)])

    @classmethod
    def Retract(cls, origin, v, Horigin=None, Hv=None):
        cls._write(Horigin, 1.0)
        cls._write(Hv, 1.0)
        return cls.group(origin.value * np.exp(v[0]))

    @classmethod
    def Logmap(cls, m, Hm=None):
        cls._write(Hm, 1.0)
        return np.array([np.log(m.value)])

    @classmethod
    def Expmap(cls, v, Hv=None):
        cls._write(Hv, 1.0)
        return cls.group(np.exp(v[0]))


PositiveReal.Traits = PositiveRealTraits


# --- Concept checker ---

@pytest.mark.parametrize("G", GROUP_CLASSES)
def test_groups_satisfy_lie_group_concept(G):
    IsLieGroup(G)
    IsGroup(G)
    IsManifold(G)


def test_complete_mock_passes_concept():
    assert lie_concept(Angle) is Angle
    IsLieGroup(PositiveReal)


def test_mock_missing_adjoint_fails_concept():
    with pytest.raises(ConceptError, match="adjoint"):
        IsLieGroup(AngleWithoutAdjoint)


def test_concept_detects_unwritten_jacobian():
    with pytest.raises(ConceptError, match="Logmap did not write its Jacobian"):
        IsLieGroup(AngleIgnoringLogmapJacobian)


def test_concept_rejects_non_lie_structure_category():
    class Wrapped(PositiveReal):
        pass

    class ManifoldOnlyTraits(PositiveRealTraits):
        group = Wrapped
        structure_category = ManifoldTag

    Wrapped.Traits = ManifoldOnlyTraits

    with pytest.raises(ConceptError, match="does not assert it is a LieGroupTag"):
        IsLieGroup(Wrapped)
    IsManifold(Wrapped)


def test_concept_rejects_type_without_traits():
    with pytest.raises(ConceptError):
        IsLieGroup(int)


def test_lie_concept_decorator_rejects_at_definition():
    with pytest.raises(ConceptError):
        @lie_concept
        class Broken(AngleWithoutAdjoint):
            N = 1


# --- Dimension checks ---

def test_dynamic_dimension_rejected_by_mixin():
    with pytest.raises(DynamicDimensionError, match="dynamically sized"):
        class Dynamic(Angle):
            N = DYNAMIC

    with pytest.raises(DynamicDimensionError):
        class Unsized(Angle):
            N = None


def test_dynamic_dimension_rejected_by_traits():
    with pytest.raises(DynamicDimensionError, match="LieGroupTraits"):
        type("BadTraits", (LieGroupTraits,), {"group": PositiveReal})


def test_abstract_base_without_dimension_is_allowed():
    class Intermediate(LieGroup):
        pass

    assert not hasattr(Intermediate, "Traits")
    with pytest.raises(TypeError):
        traits(Intermediate)


def test_subclass_of_concrete_group_gets_own_traits():
    class MySO3(SO3):
        pass

    T = traits(MySO3)
    assert T.group is MySO3
    assert T.dimension == 3
    assert traits(SO3).group is SO3

    X = T.Expmap(np.array([0.1, -0.2, 0.3]))
    for value in (T.Identity(), X, T.Inverse(X), T.Compose(X, X), T.Between(X, X),
                  T.Retract(X, np.zeros(3)), MySO3.ChartAtOrigin.Retract(np.zeros(3))):
        assert isinstance(value, MySO3)
    IsLieGroup(MySO3)


def test_subclass_keeps_parent_traits_overrides(capsys):
    class Degrees(Angle):
        class Traits(LieGroupTraits):
            @classmethod
            def Print(cls, m, s=""):
                print(f"{s}{np.degrees(m.theta):.1f} deg")

    class Heading(Degrees):
        pass

    assert traits(Degrees).group is Degrees
    assert traits(Heading).group is Heading
    assert issubclass(traits(Heading), Degrees.Traits)
    traits(Heading).Print(Heading(np.pi), "h: ")
    assert capsys.readouterr().out == "h: 180.0 deg\n"


def test_traits_declared_in_class_body_are_bound():
    class Turn(Angle):
        class Traits(LieGroupTraits):
            @classmethod
            def Print(cls, m, s=""):
                print(f"{s}turn {m.theta}")

    T = traits(Turn)
    assert T is Turn.Traits
    assert T.group is Turn
    assert T.dimension == 1
    assert isinstance(T.Identity(), Turn)
    IsLieGroup(Turn)


def test_concept_reports_missing_identity():
    class Unanchored(PositiveReal):
        pass

    class UnanchoredTraits(PositiveRealTraits):
        group = Unanchored
        Identity = None

    Unanchored.Traits = UnanchoredTraits
    with pytest.raises(ConceptError, match="traits are missing Identity"):
        IsGroup(Unanchored)


# --- Trait bridge ---

@pytest.mark.parametrize("G", GROUP_CLASSES)
def test_traits_surface(G):
    T = traits(G)
    assert T.group is G
    assert T.dimension == G.N
    X = sample(G)
    assert T.GetDimension(X) == G.N
    assert T.Equals(T.Compose(X, T.Inverse(X)), T.Identity())
    assert T.Equals(T.Between(X, X), T.Identity())


def test_traits_group_flavor():
    from lie import AdditiveGroupTag, MultiplicativeGroupTag
    assert traits(RnAdd_factory(2)).group_flavor is AdditiveGroupTag
    assert traits(SO3).group_flavor is MultiplicativeGroupTag


def test_traits_print(capsys):
    traits(SO2).Print(SO2.identity(), "I: ")
    assert capsys.readouterr().out.startswith("I: SO2(")


@pytest.mark.parametrize("G", GROUP_CLASSES)
def test_chart_at_origin(G):
    zero = np.zeros(G.N)
    assert_same(G.ChartAtOrigin.Retract(zero), G.identity())
    assert_allclose(G.ChartAtOrigin.Local(G.identity()), zero, atol=1e-12)


@pytest.mark.parametrize("G", GROUP_CLASSES)
@repeat(N_REPEATS)
def test_group_axioms(G):
    T = traits(G)
    X, Y = sample(G), sample(G)
    I = T.Identity()
    assert_same(T.Compose(X, T.Inverse(X)), I)
    assert_same(T.Compose(I, X), X)
    assert_same(T.Compose(X, I), X)
    assert_same(T.Between(X, Y), T.Compose(T.Inverse(X), Y))
    assert_same(T.Compose(X, T.Between(X, Y)), Y)


@pytest.mark.parametrize("G", GROUP_CLASSES)
@repeat(N_REPEATS)
def test_retract_local(G):
    T = traits(G)
    X = sample(G)
    zero = np.zeros(G.N)
    assert_same(T.Retract(X, zero), X)
    assert_allclose(T.Local(X, X), zero, atol=1e-8)
    v = 0.1 * np.random.randn(G.N)
    assert_allclose(T.Local(X, T.Retract(X, v)), v, atol=1e-8)


@pytest.mark.parametrize("G", GROUP_CLASSES)
@repeat(N_REPEATS)
def test_expmap_logmap_members(G):
    X, Y = sample(G), sample(G)
    assert_same(X.expmap(X.logmap(Y)), Y)
    assert_allclose(X.logmap(Y), G.Logmap(X.between(Y)), atol=1e-12)


@pytest.mark.parametrize("G", GROUP_CLASSES)
@repeat(N_REPEATS)
def test_default_free_functions(G):
    X, Y = sample(G), sample(G)
    assert_same(between_default(X, Y), X.between(Y))
    assert_allclose(logmap_default(X, Y), X.logmap(Y), atol=1e-12)
    assert_same(expmap_default(X, logmap_default(X, Y)), Y)


# --- Jacobians against finite differences ---

@pytest.mark.parametrize("G", GROUP_CLASSES)
@repeat(N_REPEATS)
def test_compose_between_jacobians(G):
    T = traits(G)
    X, Y = sample(G), sample(G)
    for op in (T.Compose, T.Between):
        H1, H2 = np.zeros((G.N, G.N)), np.zeros((G.N, G.N))
        op(X, Y, H1, H2)
        assert_allclose(H1, numerical_derivative21(op, X, Y), atol=1e-6)
        assert_allclose(H2, numerical_derivative22(op, X, Y), atol=1e-6)


@pytest.mark.parametrize("G", GROUP_CLASSES)
@repeat(N_REPEATS)
def test_inverse_jacobian(G):
    T = traits(G)
    X = sample(G)
    H = np.zeros((G.N, G.N))
    T.Inverse(X, H)
    assert_allclose(H, numerical_derivative11(T.Inverse, X), atol=1e-6)


@pytest.mark.parametrize("G", GROUP_CLASSES)
@repeat(N_REPEATS)
def test_expmap_logmap_jacobians(G):
    T = traits(G)
    v = 0.5 * np.random.randn(G.N)
    H = np.zeros((G.N, G.N))
    X = T.Expmap(v, H)
    assert_allclose(H, numerical_derivative11(T.Expmap, v), atol=1e-6)
    T.Logmap(X, H)
    assert_allclose(H, numerical_derivative11(T.Logmap, X), atol=1e-6)


@pytest.mark.parametrize("G", GROUP_CLASSES)
@repeat(N_REPEATS)
def test_retract_local_jacobians(G):
    T = traits(G)
    X, Y = sample(G), sample(G)
    v = 0.3 * np.random.randn(G.N)

    H1, H2 = np.zeros((G.N, G.N)), np.zeros((G.N, G.N))
    T.Retract(X, v, H1, H2)
    assert_allclose(H1, numerical_derivative21(T.Retract, X, v), atol=1e-6)
    assert_allclose(H2, numerical_derivative22(T.Retract, X, v), atol=1e-6)

    H1, H2 = np.zeros((G.N, G.N)), np.zeros((G.N, G.N))
    T.Local(X, Y, H1, H2)
    assert_allclose(H1, numerical_derivative21(T.Local, X, Y), atol=1e-6)
    assert_allclose(H2, numerical_derivative22(T.Local, X, Y), atol=1e-6)


def test_external_traits_jacobians():
    T = traits(PositiveReal)
    a, b = PositiveReal(2.0), PositiveReal(0.5)
    H1, H2 = np.zeros((1, 1)), np.zeros((1, 1))
    T.Local(a, b, H1, H2)
    assert_allclose(H1, numerical_derivative21(T.Local, a, b), atol=1e-8)
    assert_allclose(H2, numerical_derivative22(T.Local, a, b), atol=1e-8)


def test_only_requested_jacobians_are_written():
    X, Y = sample(SE3), sample(SE3)
    H2 = np.full((6, 6), np.nan)
    X.compose(Y, None, H2)
    assert_allclose(H2, np.eye(6))

    H1 = np.full((6, 6), np.nan)
    X.retract(np.zeros(6), H1)
    assert_allclose(H1, np.eye(6), atol=1e-12)

    H2 = np.full((6, 6), np.nan)
    X.local_coordinates(Y, None, H2)
    assert np.all(np.isfinite(H2))


def test_jacobian_slot_shape_is_checked():
    X = SO3.identity()
    with pytest.raises(AssertionError):
        X.inverse(np.zeros((2, 2)))
    with pytest.raises(AssertionError):
        X.retract(np.zeros(2))


# --- BCH ---

def _directions(n):
    return np.sin(np.arange(1, n + 1)), np.cos(1.7 * np.arange(1, n + 1))


@pytest.mark.parametrize("G", [SO3, SE2, SE3, UnitQuat])
def test_bch_third_order(G):
    x_dir, y_dir = _directions(G.N)

    def error(s):
        X, Y = s * x_dir, s * y_dir
        exact = G.Logmap(G.Expmap(X) * G.Expmap(Y))
        return np.linalg.norm(BCH(X, Y, G.lie_bracket) - exact)

    assert error(0.2) < 1e-3
    assert error(0.1) < error(0.2) / 4
    assert error(0.05) < error(0.1) / 4


@pytest.mark.parametrize("G", [SO2, RnAdd_factory(3)])
def test_bch_abelian_is_sum(G):
    X, Y = np.random.randn(G.N), np.random.randn(G.N)
    assert_allclose(BCH(X, Y, G.lie_bracket), X + Y, atol=1e-12)


def test_bch_matrix_commutator_default():
    X, Y = 0.1 * np.random.randn(3), 0.1 * np.random.randn(3)
    Z = BCH(SO3.hat(X), SO3.hat(Y))
    assert_allclose(SO3.vee(Z), BCH(X, Y, SO3.lie_bracket), atol=1e-12)


def test_bch_needs_bracket_for_vectors():
    with pytest.raises(TypeError):
        BCH(np.zeros(3), np.zeros(3))


# --- wedge / expm ---

@pytest.mark.parametrize("G", [SO2, SO3, SE2, SE3])
def test_expm_first_order(G):
    x = 0.3 * np.random.randn(G.N)
    assert_allclose(expm(G, x, 1).matrix(), np.eye(G.matrix_dim) + G.hat(x))


def test_expm_vector_space():
    R3 = RnAdd_factory(3)
    x = np.random.randn(3)
    assert_allclose(expm(R3, x, 1).vector, x)


@pytest.mark.parametrize("G", [SO2, SO3, SE2, SE3, RnAdd_factory(3)])
@repeat(N_REPEATS)
def test_expm_matches_expmap(G):
    x = np.random.randn(G.N)
    x_small = 0.1 * x / np.linalg.norm(x)
    assert_same(expm(G, x_small), G.Expmap(x_small), atol=1e-11)
    x_large = 2.5 * x / np.linalg.norm(x)
    assert_same(expm(G, x_large, 25), G.Expmap(x_large), atol=1e-9)


def test_expm_converges_with_order():
    x = np.array([0.4, -0.9, 1.2])
    errors = [np.linalg.norm(expm(SO3, x, K).matrix() - SO3.Expmap(x).matrix()) for K in range(1, 12)]
    assert all(e2 < e1 for e1, e2 in zip(errors, errors[1:]))


def test_matrix_expm_against_scipy():
    A = 0.5 * np.random.randn(5, 5)
    assert_allclose(matrix_expm(A, 30), scipy.linalg.expm(A), atol=1e-10)
    assert_allclose(matrix_expm(A, 0), np.eye(5))


def test_wedge():
    x = np.array([1.0, 2.0, 3.0])
    assert_allclose(wedge(SO3, x), -wedge(SO3, x).T)
    assert_allclose(SO3.vee(wedge(SO3, x)), x)
    with pytest.raises(TypeError):
        wedge(UnitQuat, x)
