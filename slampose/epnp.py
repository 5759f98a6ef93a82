"""Efficient Perspective-n-Point pose estimation from 3D-2D correspondences."""

from __future__ import annotations

import math

import numpy as np

# Order in which the six control-point pairs are visited.
_PAIRS = ((0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3))

_GAUSS_NEWTON_ITERATIONS = 5


def qr_solve(a, b):
    """Solve ``a @ x = b`` in the least-squares sense with Householder QR.

    Raises ``numpy.linalg.LinAlgError`` when a column of ``a`` is all zero.
    """
    a = np.array(a, dtype=float)
    b = np.array(b, dtype=float).reshape(-1)
    if a.ndim != 2:
        raise ValueError("a must be a two-dimensional matrix")
    nr, nc = a.shape
    if nc == 0 or nr < nc:
        raise ValueError("a must have at least as many rows as columns")
    if b.shape[0] != nr:
        raise ValueError("b must have one entry per row of a")

    a1 = np.zeros(nc)
    a2 = np.zeros(nc)
    for k in range(nc):
        column = a[k:, k]
        eta = np.max(np.abs(column))
        if eta == 0:
            raise np.linalg.LinAlgError("matrix is singular")
        column /= eta
        sigma = math.sqrt(float(column @ column))
        if column[0] < 0:
            sigma = -sigma
        column[0] += sigma
        a1[k] = sigma * column[0]
        a2[k] = -eta * sigma
        if k + 1 < nc:
            taus = (column @ a[k:, k + 1:]) / a1[k]
            a[k:, k + 1:] -= np.outer(column, taus)

    # b <- Q^T b
    for j in range(nc):
        tau = (a[j:, j] @ b[j:]) / a1[j]
        b[j:] -= tau * a[j:, j]

    # x = R^-1 b
    x = np.zeros(nc)
    x[nc - 1] = b[nc - 1] / a2[nc - 1]
    for i in range(nc - 2, -1, -1):
        x[i] = (b[i] - a[i, i + 1:] @ x[i + 1:]) / a2[i]
    return x


def mat_to_quat(r):
    """Return the quaternion of a rotation matrix as a 4-vector (vector part first)."""
    r = np.asarray(r, dtype=float)
    if r.shape != (3, 3):
        raise ValueError("rotation must be a 3x3 matrix")
    tr = r[0, 0] + r[1, 1] + r[2, 2]
    if tr > 0.0:
        q = np.array([r[1, 2] - r[2, 1], r[2, 0] - r[0, 2], r[0, 1] - r[1, 0], tr + 1.0])
        n4 = q[3]
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        q = np.array([
            1.0 + r[0, 0] - r[1, 1] - r[2, 2],
            r[1, 0] + r[0, 1],
            r[2, 0] + r[0, 2],
            r[1, 2] - r[2, 1],
        ])
        n4 = q[0]
    elif r[1, 1] > r[2, 2]:
        q = np.array([
            r[1, 0] + r[0, 1],
            1.0 + r[1, 1] - r[0, 0] - r[2, 2],
            r[2, 1] + r[1, 2],
            r[2, 0] - r[0, 2],
        ])
        n4 = q[1]
    else:
        q = np.array([
            r[2, 0] + r[0, 2],
            r[2, 1] + r[1, 2],
            1.0 + r[2, 2] - r[0, 0] - r[1, 1],
            r[0, 1] - r[1, 0],
        ])
        n4 = q[2]
    return q * (0.5 / math.sqrt(n4))


def relative_error(r_true, t_true, r_est, t_est):
    """Return the relative rotation and translation errors of an estimated pose."""
    q_true = mat_to_quat(r_true)
    q_est = mat_to_quat(r_est)
    q_norm = np.linalg.norm(q_true)
    rot_err = min(
        np.linalg.norm(q_true - q_est) / q_norm,
        np.linalg.norm(q_true + q_est) / q_norm,
    )
    t_true = np.asarray(t_true, dtype=float)
    t_est = np.asarray(t_est, dtype=float)
    transl_err = np.linalg.norm(t_true - t_est) / np.linalg.norm(t_true)
    return float(rot_err), float(transl_err)


def _validate(points_3d, points_2d):
    pws = np.asarray(points_3d, dtype=float)
    us = np.asarray(points_2d, dtype=float)
    if pws.ndim != 2 or pws.shape[1] != 3:
        raise ValueError("points_3d must have shape (n, 3)")
    if us.ndim != 2 or us.shape[1] != 2:
        raise ValueError("points_2d must have shape (n, 2)")
    if pws.shape[0] != us.shape[0]:
        raise ValueError("points_3d and points_2d must have the same length")
    if pws.shape[0] == 0:
        raise ValueError("at least one correspondence is required")
    return pws, us


def _choose_control_points(pws):
    """Centroid plus three points along the principal axes of the cloud."""
    n = pws.shape[0]
    c0 = pws.mean(axis=0)
    pw0 = pws - c0
    u, dc, _ = np.linalg.svd(pw0.T @ pw0)
    uct = u.T
    cws = np.empty((4, 3))
    cws[0] = c0
    for i in range(1, 4):
        cws[i] = c0 + math.sqrt(dc[i - 1] / n) * uct[i - 1]
    return cws


def _barycentric_coordinates(pws, cws):
    cc = (cws[1:] - cws[0]).T
    cc_inv = np.linalg.pinv(cc)
    alphas = np.empty((pws.shape[0], 4))
    alphas[:, 1:] = (pws - cws[0]) @ cc_inv.T
    alphas[:, 0] = 1.0 - alphas[:, 1:].sum(axis=1)
    return alphas


def _compute_l_6x10(ut):
    vs = [ut[11 - i].reshape(4, 3) for i in range(4)]
    dv = np.array([[v[a] - v[b] for a, b in _PAIRS] for v in vs])

    def d(i, j):
        return np.einsum("kc,kc->k", dv[i], dv[j])

    return np.column_stack([
        d(0, 0),
        2.0 * d(0, 1),
        d(1, 1),
        2.0 * d(0, 2),
        2.0 * d(1, 2),
        d(2, 2),
        2.0 * d(0, 3),
        2.0 * d(1, 3),
        2.0 * d(2, 3),
        d(3, 3),
    ])


def _compute_rho(cws):
    return np.array([np.sum((cws[a] - cws[b]) ** 2) for a, b in _PAIRS])


def _lstsq(m, rhs):
    return np.linalg.lstsq(m, rhs, rcond=None)[0]


def _find_betas_approx_1(l_6x10, rho):
    b4 = _lstsq(l_6x10[:, [0, 1, 3, 6]], rho)
    if b4[0] < 0:
        b0 = math.sqrt(-b4[0])
        return np.array([b0, -b4[1] / b0, -b4[2] / b0, -b4[3] / b0])
    b0 = np.sqrt(b4[0])
    return np.array([b0, b4[1] / b0, b4[2] / b0, b4[3] / b0])


def _first_two_betas(b):
    if b[0] < 0:
        beta0 = math.sqrt(-b[0])
        beta1 = math.sqrt(-b[2]) if b[2] < 0 else 0.0
    else:
        beta0 = math.sqrt(b[0])
        beta1 = math.sqrt(b[2]) if b[2] > 0 else 0.0
    if b[1] < 0:
        beta0 = -beta0
    return beta0, beta1


def _find_betas_approx_2(l_6x10, rho):
    b3 = _lstsq(l_6x10[:, :3], rho)
    beta0, beta1 = _first_two_betas(b3)
    return np.array([beta0, beta1, 0.0, 0.0])


def _find_betas_approx_3(l_6x10, rho):
    b5 = _lstsq(l_6x10[:, :5], rho)
    beta0, beta1 = _first_two_betas(b5)
    beta2 = np.float64(b5[3]) / np.float64(beta0)
    return np.array([beta0, beta1, beta2, 0.0])


def _gauss_newton(l_6x10, rho, betas):
    betas = np.array(betas, dtype=float)
    l = l_6x10
    for _ in range(_GAUSS_NEWTON_ITERATIONS):
        b0, b1, b2, b3 = betas
        a = np.column_stack([
            2 * l[:, 0] * b0 + l[:, 1] * b1 + l[:, 3] * b2 + l[:, 6] * b3,
            l[:, 1] * b0 + 2 * l[:, 2] * b1 + l[:, 4] * b2 + l[:, 7] * b3,
            l[:, 3] * b0 + l[:, 4] * b1 + 2 * l[:, 5] * b2 + l[:, 8] * b3,
            l[:, 6] * b0 + l[:, 7] * b1 + l[:, 8] * b2 + 2 * l[:, 9] * b3,
        ])
        products = np.array([
            b0 * b0, b0 * b1, b1 * b1, b0 * b2, b1 * b2,
            b2 * b2, b0 * b3, b1 * b3, b2 * b3, b3 * b3,
        ])
        b = rho - l @ products
        try:
            betas += qr_solve(a, b)
        except np.linalg.LinAlgError:
            break
    return betas


def _estimate_r_and_t(pcs, pws):
    pc0 = pcs.mean(axis=0)
    pw0 = pws.mean(axis=0)
    abt = (pcs - pc0).T @ (pws - pw0)
    u, _, vt = np.linalg.svd(abt)
    r = u @ vt
    if np.linalg.det(r) < 0:
        r[2] = -r[2]
    t = pc0 - r @ pw0
    return r, t


class EPnP:
    """Camera pose from n >= 4 world points and their image projections."""

    def __init__(self, fu, fv, uc, vc):
        self.fu = float(fu)
        self.fv = float(fv)
        self.uc = float(uc)
        self.vc = float(vc)

    def compute_pose(self, points_3d, points_2d):
        """Estimate the pose; return ``(rotation, translation, mean reprojection error)``."""
        pws, us = _validate(points_3d, points_2d)
        with np.errstate(divide="ignore", invalid="ignore"):
            cws = _choose_control_points(pws)
            alphas = _barycentric_coordinates(pws, cws)
            m = self._fill_m(alphas, us)
            u, _, _ = np.linalg.svd(m.T @ m)
            ut = u.T

            l_6x10 = _compute_l_6x10(ut)
            rho = _compute_rho(cws)

            candidates = []
            for finder in (_find_betas_approx_1, _find_betas_approx_2, _find_betas_approx_3):
                betas = _gauss_newton(l_6x10, rho, finder(l_6x10, rho))
                candidates.append(self._compute_r_and_t(ut, betas, alphas, pws, us))

        best = 0
        if candidates[1][2] < candidates[0][2]:
            best = 1
        if candidates[2][2] < candidates[best][2]:
            best = 2
        return candidates[best]

    def reprojection_error(self, r, t, points_3d, points_2d):
        """Mean pixel distance between observed and reprojected points."""
        pws, us = _validate(points_3d, points_2d)
        r = np.asarray(r, dtype=float)
        t = np.asarray(t, dtype=float).reshape(3)
        pc = pws @ r.T + t
        inv_z = 1.0 / pc[:, 2]
        ue = self.uc + self.fu * pc[:, 0] * inv_z
        ve = self.vc + self.fv * pc[:, 1] * inv_z
        return float(np.mean(np.hypot(us[:, 0] - ue, us[:, 1] - ve)))

    def _fill_m(self, alphas, us):
        n = alphas.shape[0]
        m = np.zeros((2 * n, 12))
        m[0::2, 0::3] = alphas * self.fu
        m[0::2, 2::3] = alphas * (self.uc - us[:, 0])[:, None]
        m[1::2, 1::3] = alphas * self.fv
        m[1::2, 2::3] = alphas * (self.vc - us[:, 1])[:, None]
        return m

    def _compute_r_and_t(self, ut, betas, alphas, pws, us):
        ccs = sum(betas[i] * ut[11 - i].reshape(4, 3) for i in range(4))
        pcs = alphas @ ccs
        if pcs[0, 2] < 0.0:
            pcs = -pcs
        r, t = _estimate_r_and_t(pcs, pws)
        return r, t, self.reprojection_error(r, t, pws, us)