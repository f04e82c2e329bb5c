from google.genai import types
from py_expression_eval import Parser


def calculate(ctx, expression: str) -> dict:
    """
    Evaluate an arithmetic expression such as "(250 * 2) / 3".

    Returns:
        {"success": True, "result": <value>} or {"success": False, "error": "..."}
    """
    try:
        result = Parser().parse(expression).evaluate({})
        return {"success": True, "result": result}
    except ZeroDivisionError:
        return {"success": False, "error": "Division by zero occurred in the expression."}
    except Exception as e:
        # parser raises bare Exceptions for bad syntax and unknown names
        return {"success": False, "error": f"Invalid expression or calculation error: {e}"}


schema_calculate = types.FunctionDeclaration(
    name="calculate",
    description="Evaluates a complete arithmetic expression with standard order of operations. Use it for every sum, ratio or percentage.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "expression": types.Schema(
                type=types.Type.STRING,
                description="The expression to evaluate, e.g. '(2000 - 1450) / 2000 * 100'.",
            )
        },
        required=["expression"],
    ),
)
