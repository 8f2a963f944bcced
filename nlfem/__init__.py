"""nlfem: nonlinear equilibrium-solve core for finite-element simulations."""

__version__ = "0.1.0"
