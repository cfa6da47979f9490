"""
Node configuration schemas.

One pydantic model per node type. The set of keys in NODE_CONFIG_MODELS
is the closed node tag set: a node whose type is not listed cannot be
parsed, published or executed.

Stored configs use the editor's camelCase keys; models expose snake_case
attributes and accept either spelling.
"""

from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from engine.errors import FlowValidationError, UnsupportedNodeType


class NodeConfigBase(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


# ============================================================================
# TRIGGER
# ============================================================================

class TriggerConfig(NodeConfigBase):
    keywords: List[str] = Field(default_factory=list)
    case_sensitive: bool = False


# ============================================================================
# MESSAGE SENDS
# ============================================================================

class SendTextConfig(NodeConfigBase):
    message: str = ""


class SendTextEnhancedConfig(NodeConfigBase):
    body_text: str = ""
    header_text: Optional[str] = None
    footer_text: Optional[str] = None


class SendImageConfig(NodeConfigBase):
    image_url: str = ""
    caption: Optional[str] = None


class SendVideoConfig(NodeConfigBase):
    video_url: str = ""
    caption: Optional[str] = None


class SendAudioConfig(NodeConfigBase):
    audio_url: str = ""


class SendDocumentConfig(NodeConfigBase):
    document_url: str = ""
    filename: Optional[str] = None
    caption: Optional[str] = None


class SendLocationConfig(NodeConfigBase):
    latitude: Union[str, float] = ""
    longitude: Union[str, float] = ""
    name: Optional[str] = None
    address: Optional[str] = None


class ContactItem(NodeConfigBase):
    name: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class SendContactConfig(NodeConfigBase):
    contacts: List[ContactItem] = Field(default_factory=list)


class SendStickerConfig(NodeConfigBase):
    sticker_url: str = ""


class ButtonItem(NodeConfigBase):
    id: str
    title: str = ""


class SendButtonsConfig(NodeConfigBase):
    body_text: str = ""
    header_text: Optional[str] = None
    footer_text: Optional[str] = None
    buttons: List[ButtonItem] = Field(default_factory=list)


class ListRow(NodeConfigBase):
    id: str
    title: str = ""
    description: Optional[str] = None


class ListSection(NodeConfigBase):
    title: str = ""
    rows: List[ListRow] = Field(default_factory=list)


class SendListConfig(NodeConfigBase):
    body_text: str = ""
    button_text: str = "View Options"
    header_text: Optional[str] = None
    footer_text: Optional[str] = None
    sections: List[ListSection] = Field(default_factory=list)


class SendStampCardConfig(NodeConfigBase):
    stamp_server_url: Optional[str] = None
    stamp_count: Union[str, int] = "0"
    customer_name: str = ""
    title: Optional[str] = None
    subtitle: Optional[str] = None
    caption: Optional[str] = None
    use_template: bool = False
    template_id: Optional[str] = None
    use_custom_template: bool = False
    custom_html: Optional[str] = None
    custom_style: Optional[str] = None


class MarkAsReadConfig(NodeConfigBase):
    pass


# ============================================================================
# CONTROL
# ============================================================================

class WaitForReplyConfig(NodeConfigBase):
    variable_name: Optional[str] = None
    expected_type: Literal["text", "button", "list", "image", "any"] = "any"
    timeout_seconds: Optional[int] = None


class ConditionRule(NodeConfigBase):
    variable: str
    operator: str = "equals"
    value: Any = ""
    output_handle: str = "true"


class ConditionConfig(NodeConfigBase):
    conditions: List[ConditionRule] = Field(default_factory=list)
    default_handle: Optional[str] = None


class LoopConfig(NodeConfigBase):
    loop_type: Literal["count", "while", "foreach"] = "count"
    max_iterations: int = 10
    collection: Optional[str] = None
    item_variable: str = "item"
    conditions: List[ConditionRule] = Field(default_factory=list)


class DelayConfig(NodeConfigBase):
    delay_seconds: float = 1


class EndConfig(NodeConfigBase):
    end_type: Literal["complete", "error"] = "complete"


# ============================================================================
# VARIABLES, INTEGRATIONS, USER DATA, UTILITIES
# ============================================================================

class VariableAssignment(NodeConfigBase):
    variable_name: str
    value_type: Literal["static", "expression", "from_variable", "variable"] = "static"
    value: Any = ""


class SetVariableConfig(NodeConfigBase):
    assignments: List[VariableAssignment] = Field(default_factory=list)


class ResponseMapping(NodeConfigBase):
    variable_name: str
    json_path: Optional[str] = None
    response_path: Optional[str] = None

    @property
    def path(self) -> Optional[str]:
        return self.json_path or self.response_path


class ApiCallConfig(NodeConfigBase):
    method: str = "GET"
    url: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    response_mapping: List[ResponseMapping] = Field(default_factory=list)
    timeout_ms: int = 10000


class GetCustomerPhoneConfig(NodeConfigBase):
    variable_name: str = "customer_phone"
    format: str = "e164"


class GetCustomerNameConfig(NodeConfigBase):
    variable_name: str = "customer_name"


class GetCustomerCountryConfig(NodeConfigBase):
    variable_name: str = "customer_country"


class GetMessageTimestampConfig(NodeConfigBase):
    variable_name: str = "message_timestamp"


class FormatPhoneNumberConfig(NodeConfigBase):
    source_variable: str = "customer_phone"
    variable_name: str = "formatted_phone"
    format: str = "e164"


class RandomChoiceConfig(NodeConfigBase):
    choices: List[str] = Field(default_factory=list)
    variable_name: str = "random_choice"


class DateTimeConfig(NodeConfigBase):
    variable_name: str = "datetime"
    operation: str = "now"
    format: str = "iso"
    days: Optional[float] = None
    hours: Optional[float] = None


class MathOperationConfig(NodeConfigBase):
    variable_name: str = "result"
    operation: str = "add"
    value_a: Any = ""
    value_b: Any = None


class TextOperationConfig(NodeConfigBase):
    variable_name: str = "result"
    operation: str = "trim"
    text: str = ""
    start: Optional[int] = None
    end: Optional[int] = None
    search: Optional[str] = None
    replace_with: Optional[str] = None
    delimiter: Optional[str] = None
    array_variable: Optional[str] = None


NODE_CONFIG_MODELS: Dict[str, Type[NodeConfigBase]] = {
    "trigger": TriggerConfig,
    "sendText": SendTextConfig,
    "sendTextEnhanced": SendTextEnhancedConfig,
    "sendImage": SendImageConfig,
    "sendVideo": SendVideoConfig,
    "sendAudio": SendAudioConfig,
    "sendDocument": SendDocumentConfig,
    "sendLocation": SendLocationConfig,
    "sendContact": SendContactConfig,
    "sendSticker": SendStickerConfig,
    "sendButtons": SendButtonsConfig,
    "sendList": SendListConfig,
    "sendStampCard": SendStampCardConfig,
    "markAsRead": MarkAsReadConfig,
    "waitForReply": WaitForReplyConfig,
    "condition": ConditionConfig,
    "loop": LoopConfig,
    "delay": DelayConfig,
    "end": EndConfig,
    "setVariable": SetVariableConfig,
    "apiCall": ApiCallConfig,
    "getCustomerPhone": GetCustomerPhoneConfig,
    "getCustomerName": GetCustomerNameConfig,
    "getCustomerCountry": GetCustomerCountryConfig,
    "getMessageTimestamp": GetMessageTimestampConfig,
    "formatPhoneNumber": FormatPhoneNumberConfig,
    "randomChoice": RandomChoiceConfig,
    "dateTime": DateTimeConfig,
    "mathOperation": MathOperationConfig,
    "textOperation": TextOperationConfig,
}

NODE_TYPES = frozenset(NODE_CONFIG_MODELS)


def parse_node_config(node_type: str, raw: Optional[Dict[str, Any]]) -> NodeConfigBase:
    """
    Parse a stored config payload into its typed model.

    Raises:
        UnsupportedNodeType: node_type is outside the closed tag set
        FlowValidationError: payload does not fit the node type's schema
    """
    model = NODE_CONFIG_MODELS.get(node_type)
    if model is None:
        raise UnsupportedNodeType(node_type)
    try:
        return model.model_validate(raw or {})
    except ValidationError as e:
        problems = [
            f"{node_type}.{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise FlowValidationError(problems)
