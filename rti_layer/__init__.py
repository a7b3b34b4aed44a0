"""
RTI layer package: diffusion in three stacked tissue layers.

Implements:
- Axisymmetric FTCS solver for dc/dt = D* lap(c) + s - kappa c with
  D* = theta * D_free, in a cylinder split into SR / SP / SO layers
- Flux-matching ghost rows at layer interfaces:
    cb = (D*_l a_l c_l + D*_u a_u c_u) / (D*_l a_l + D*_u a_u)
- Closed-form homogeneous (erfc) RTI curve for the apparent parameters
- Nelder-Mead fits of the characteristic curve and of one layer's
  (alpha, theta, kappa) to measured data

Provides:
- Run configuration (rti_layer.config)
- Grid, stencil and solver (rti_layer.grid, rti_layer.stencil, rti_layer.solver)
- Homogeneous model (rti_layer.model)
- Objectives and fits (rti_layer.fit, rti_layer.simplex)
- File I/O (rti_layer.data), diagnostics and plotting
"""
__all__ = ["config", "grid", "stencil", "solver", "model", "fit", "simplex",
           "data", "diagnostics", "plots"]
__version__ = "0.1.0"
