import numpy as np
import matplotlib.pyplot as plt

from lie import BCH, expm, traits
from liegroups import SE3, SO3, RnAdd_factory, product_groups_factory

X_DIR = np.array([0.3, -0.5, 0.8])
Y_DIR = np.array([-0.6, 0.2, 0.4])


def bch_errors(scales, G=SO3, x_dir=X_DIR, y_dir=Y_DIR) -> np.ndarray:
    """Error of BCH(sX, sY) against Logmap(Expmap(sX) * Expmap(sY)) for each scale s."""
    errors = []
    for s in scales:
        X, Y = s * x_dir, s * y_dir
        exact = G.Logmap(G.Expmap(X) * G.Expmap(Y))
        errors.append(np.linalg.norm(BCH(X, Y, G.lie_bracket) - exact))
    return np.array(errors)


def expm_errors(orders, G=SO3, x=X_DIR) -> np.ndarray:
    """Distance between the truncated-series expm of order K and the closed-form Expmap."""
    exact = G.Expmap(x)
    return np.array([np.linalg.norm(expm(G, x, K).matrix() - exact.matrix()) for K in orders])


def plot_convergence(show: bool = True):
    scales = np.logspace(-3, 0, 20)
    orders = np.arange(1, 16)

    fig, (ax_bch, ax_expm) = plt.subplots(1, 2, figsize=(10, 4))
    ax_bch.loglog(scales, bch_errors(scales), 'o-', label="BCH error")
    ax_bch.loglog(scales, scales ** 5, 'k--', label="$s^5$")
    ax_bch.set_xlabel("scale s")
    ax_bch.set_ylabel("error")
    ax_bch.set_title("BCH vs Log(Exp(X) Exp(Y)) on SO(3)")
    ax_bch.legend()
    ax_bch.grid()

    ax_expm.semilogy(orders, np.maximum(expm_errors(orders), 1e-17), 'o-')
    ax_expm.set_xlabel("series order K")
    ax_expm.set_ylabel("error")
    ax_expm.set_title("expm(x, K) vs closed-form Expmap")
    ax_expm.grid()

    fig.tight_layout()
    if show:
        plt.show()
    return fig


def main():
    # --- The trait surface a generic optimizer sees ---
    T = traits(SE3)
    X = T.Expmap(np.array([0.1, -0.2, 0.3, 1.0, 2.0, 3.0]))
    Y = T.Expmap(np.array([0.05, -0.1, 0.0, -1.0, 0.5, 0.2]))
    H1, H2 = np.zeros((6, 6)), np.zeros((6, 6))
    Z = T.Compose(X, Y, H1, H2)
    T.Print(Z, "Compose SE3: ")
    print("d(XY)/dX:\n", np.round(H1, 4))

    # --- Retract / Local round trip ---
    v = np.array([0.01, 0.02, -0.03, 0.1, 0.0, -0.1])
    print("Local(X, Retract(X, v)) - v:", T.Local(X, T.Retract(X, v)) - v)

    # --- Product group SO3 x R3 ---
    SO3_R3 = product_groups_factory(SO3, RnAdd_factory(3))
    P = traits(SO3_R3)
    A = P.Expmap(np.array([0.1, -0.2, 0.3, 1.0, 2.0, 3.0]))
    print(SO3_R3.__name__, "Logmap:", P.Logmap(A))

    plot_convergence()


if __name__ == "__main__":
    main()
