from typing import List, Dict, Any

from ..schemas import BlockCategory, BlockSchema, InputSpec, OutputSpec


class BaseBlock:
    """Mixin to add block metadata and the execute() contract to PocketFlow nodes"""
    BLOCK_TYPE = "base"
    NAME = "Base Block"
    DESCRIPTION = "Base Block"
    CATEGORY = BlockCategory.ACTION
    INPUTS: List[InputSpec] = []
    OUTPUTS: List[OutputSpec] = []
    CREDIT_COST = 0

    @classmethod
    def get_schema(cls) -> BlockSchema:
        return BlockSchema(
            type=cls.BLOCK_TYPE,
            name=cls.NAME,
            description=cls.DESCRIPTION,
            category=cls.CATEGORY,
            inputs=cls.INPUTS,
            outputs=cls.OUTPUTS,
            creditCost=cls.CREDIT_COST,
        )

    def execute(self, inputs: Dict[str, Any], context) -> Dict[str, Any]:
        """
        Run the block once: prep -> exec (with PocketFlow retries) -> post.

        Errors propagate to the caller. Non-dict results are wrapped as
        {"result": value}.
        """
        shared = {"inputs": dict(inputs), "context": context}
        self.run(shared)
        output = shared.get("output")
        if output is None:
            return {}
        if not isinstance(output, dict):
            return {"result": output}
        return output

    def prep(self, shared):
        return shared["inputs"]

    def post(self, shared, prep_res, exec_res):
        shared["output"] = exec_res
        # Return None to use "default" action
        return None


def require_input(inputs: Dict[str, Any], name: str, hint: str = "") -> Any:
    value = inputs.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"{name} is required.{' ' + hint if hint else ''}")
    return value
