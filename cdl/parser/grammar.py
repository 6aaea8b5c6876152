"""
PEG grammar of the supported CDL subset.

The grammar accepts one class definition per source text and is written for
parsimonious. It is slightly wider than CDL where a construct must be
recognised to be rejected with a precise message (restrictions other than
block/model/package, short class definitions, equations other than
``connect``); the syntax tree builder raises on those. Keywords that CDL
excludes never match an identifier, so a parse failure stops right at them
and the parser reports them by name.

The payload of ``__cdl(brick(...))`` and ``__cdl(haystack(...))`` is Turtle
or JSON text, so it is matched as balanced parentheses and kept verbatim.
"""

from parsimonious.grammar import Grammar

KEYWORDS = frozenset(
    """
    algorithm and annotation block break class connect connector constant
    constrainedby der discrete each else elseif elsewhen encapsulated end
    enumeration equation expandable extends external false final flow for
    function if import impure in initial inner input loop model not operator
    or outer output package parameter partial protected public pure record
    redeclare replaceable return stream then true type when while within
    """.split()
)

EXCLUDED_KEYWORDS = frozenset({"redeclare", "constrainedby", "replaceable", "inner", "outer"})

CLOCK_CONSTRUCTS = frozenset(
    {
        "Clock",
        "sample",
        "hold",
        "subSample",
        "superSample",
        "shiftSample",
        "backSample",
        "previous",
        "interval",
        "firstTick",
        "noClock",
    }
)

SUPPORTED_RESTRICTIONS = ("block", "model", "package")

CDL_GRAMMAR = Grammar(
    r"""
    # ---------------------------------------------------------------
    # Class definitions
    # ---------------------------------------------------------------

    stored_definition     = _ within_clause? class_definition
    within_clause         = ~r"within\b" _ name? ";" _
    class_definition      = class_prefixes ident class_specifier
    class_prefixes        = encapsulated? partial? restriction
    encapsulated          = ~r"encapsulated\b" _
    partial               = ~r"partial\b" _
    restriction           = ~r"(?:block|model|package|class|connector|record|type|function|expandable\s+connector)\b" _
    class_specifier       = short_specifier / long_specifier
    short_specifier       = "=" _ ~r"[^;]*" ";" _
    long_specifier        = string_comment composition ~r"end\b" _ ident ";" _

    composition           = composition_item*
    composition_item      = visibility / equation_section / class_annotation / element
    visibility            = ~r"(?:public|protected)\b" _
    class_annotation      = annotation ";" _

    # ---------------------------------------------------------------
    # Declarations
    # ---------------------------------------------------------------

    element               = final? type_prefix? name array_subscripts? component_list ";" _
    final                 = ~r"final\b" _
    type_prefix           = ~r"(?:parameter|constant)\b" _
    component_list        = component_declaration ("," _ component_declaration)*
    component_declaration = ident array_subscripts? class_modification? binding? condition_attribute? string_comment annotation?
    binding               = "=" !"=" _ expression
    condition_attribute   = ~r"if\b" _ expression
    array_subscripts      = "[" _ subscript ("," _ subscript)* "]" _
    subscript             = colon / expression
    colon                 = ":" !"=" _

    # ---------------------------------------------------------------
    # Modifications and annotations
    # ---------------------------------------------------------------

    class_modification    = "(" _ argument_list? ")" _
    argument_list         = argument ("," _ argument)*
    argument              = cdl_argument / element_modification
    element_modification  = each? final? name class_modification? modification_value? string_comment
    each                  = ~r"each\b" _
    modification_value    = "=" !"=" _ expression
    annotation            = ~r"annotation\b" _ class_modification

    cdl_argument          = ~r"__cdl\b" _ "(" _ cdl_argument_list? ")" _
    cdl_argument_list     = cdl_entry ("," _ cdl_entry)*
    cdl_entry             = tag_argument / argument
    tag_argument          = tag_name "(" payload ")" _
    tag_name              = ~r"(?:brick|haystack)\b" _
    payload               = payload_item*
    payload_item          = payload_string / payload_group / ~r'[^()"]+'
    payload_group         = "(" payload ")"
    payload_string        = ~r'"(?:[^"\\]|\\.)*"'

    # ---------------------------------------------------------------
    # Equations
    # ---------------------------------------------------------------

    equation_section      = ~r"equation\b" _ equation*
    equation              = connect_clause / other_equation
    connect_clause        = ~r"connect\b" _ "(" _ component_ref "," _ component_ref ")" _ string_comment annotation? ";" _
    other_equation        = !section_keyword !~r"connect\b" ~r"[^;]+" ";" _
    section_keyword       = ~r"(?:end|public|protected|equation|algorithm|initial|annotation)\b"
    component_ref         = ref_part ("." _ ref_part)*
    ref_part              = ident array_subscripts?

    # ---------------------------------------------------------------
    # Expressions
    # ---------------------------------------------------------------

    standalone_expression = _ expression
    expression            = if_expression / logical_expression
    if_expression         = ~r"if\b" _ expression ~r"then\b" _ expression elseif_branch* ~r"else\b" _ expression
    elseif_branch         = ~r"elseif\b" _ expression ~r"then\b" _ expression
    logical_expression    = logical_term (~r"or\b" _ logical_term)*
    logical_term          = logical_factor (~r"and\b" _ logical_factor)*
    logical_factor        = not_operator? relation
    not_operator          = ~r"not\b" _
    relation              = arithmetic (relational_operator arithmetic)?
    relational_operator   = ~r"<=|>=|==|<>|<|>" _
    arithmetic            = add_operator? term (add_operator term)*
    add_operator          = ~r"[+-]" _
    term                  = factor (mul_operator factor)*
    mul_operator          = ~r"[*/]" _
    factor                = primary ("^" _ primary)?
    primary               = number / string / boolean / parenthesized / array_constructor
                          / matrix_constructor / function_call / name_reference
    parenthesized         = "(" _ expression ")" _
    array_constructor     = "{" _ expression_list? "}" _
    matrix_constructor    = "[" _ expression_list (";" _ expression_list)* "]" _
    expression_list       = expression ("," _ expression)*
    function_call         = name "(" _ call_arguments? ")" _
    call_arguments        = call_argument ("," _ call_argument)*
    call_argument         = named_argument / expression
    named_argument        = ident "=" !"=" _ expression
    name_reference        = name array_subscripts?

    # ---------------------------------------------------------------
    # Lexical elements
    # ---------------------------------------------------------------

    string_comment        = (string ("+" _ string)*)?
    name                  = ident ("." ident)*
    ident                 = (plain_ident / quoted_ident) _
    plain_ident           = !keyword ~r"[A-Za-z_][A-Za-z0-9_]*"
    quoted_ident          = ~r"'(?:[^'\\\n]|\\.)+'"
    keyword               = ~r"(?:algorithm|and|annotation|block|break|class|connect|connector|constant|constrainedby|der|discrete|each|else|elseif|elsewhen|encapsulated|end|enumeration|equation|expandable|extends|external|false|final|flow|for|function|if|import|impure|in|initial|inner|input|loop|model|not|operator|or|outer|output|package|parameter|partial|protected|public|pure|record|redeclare|replaceable|return|stream|then|true|type|when|while|within)\b"
    number                = ~r"\d+(?:\.\d*)?(?:[eE][+-]?\d+)?" _
    string                = ~r'"(?:[^"\\]|\\.)*"' _
    boolean               = ~r"(?:true|false)\b" _
    _                     = ~r"(?:\s+|//[^\n]*|/\*.*?\*/)*"s
    """
)
