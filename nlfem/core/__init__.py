from .errors import ConfigurationError, NonConvergenceError, LinearSolveError
from .localmatrix import LocalMatrix, LocalVector
from .element import LocalElementInfo, LocalElementSolution
__all__=['ConfigurationError','NonConvergenceError','LinearSolveError',
         'LocalMatrix','LocalVector','LocalElementInfo','LocalElementSolution']
