from .base import BaseCanvasNode, ProducedValue
from ..handles import output


class TextInputNode(BaseCanvasNode):
    NODE_TYPE = "textInput"
    LABEL = "Text Input"
    DESCRIPTION = "Literal text typed by the user"
    DEFAULTS = {"text": ""}
    OUTPUTS = [output("text", "Text")]

    @classmethod
    def produced_value(cls, data):
        # Empty text is still a value: it clears the downstream prompt
        return ProducedValue("text", data.get("text") or "")


class ImageUploadNode(BaseCanvasNode):
    NODE_TYPE = "imageUpload"
    LABEL = "Image Upload"
    DESCRIPTION = "An image file stored with the workflow"
    DEFAULTS = {"imageUrl": "", "fileName": ""}
    OUTPUTS = [output("image", "Image")]

    @classmethod
    def produced_value(cls, data):
        return ProducedValue("image", data.get("imageUrl") or "")
