from .tool_layers_stack import ToolLayersStack, KubectlLayer, KfctlLayer
