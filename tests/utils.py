"""
Utility functions shared across trustc tests.
"""
from trustc import ModulePass, Print, split_lines


def compile_program(source: str, **kwargs):
    """
    Run the module pass over source text and return the Program.
    """
    return ModulePass(split_lines(source), **kwargs).compile()


def printed(program):
    """
    Rendered texts of every print instruction, in order.
    """
    return [ins.text for ins in program.instructions if isinstance(ins, Print)]


def entry_section(ir_text: str) -> str:
    """
    The body of the synthetic entry function.
    """
    return ir_text.split('define i32 @"main"()', 1)[1]
