from .eks_console_construct import EksConsole
