"""
node_types.py
=============
Closed classification tables for n8n node type tags and connection
categories.

Every node is assigned exactly one `NodeCategory`. Unknown type tags fall
back to `NodeCategory.ACTION` and still take part in graph and expression
handling like any other node.
"""

from __future__ import annotations

from enum import Enum


class NodeCategory(str, Enum):
    TRIGGER = "trigger"
    FLOW = "flow"
    TRANSFORM = "transform"
    INTEGRATION = "integration"
    AI = "ai"
    ACTION = "action"


# ---------------------------------------------------------------------------
# Type tag tables
# ---------------------------------------------------------------------------

TRIGGER_NODE_TYPES: frozenset[str] = frozenset({
    "n8n-nodes-base.manualTrigger",
    "n8n-nodes-base.webhook",
    "n8n-nodes-base.scheduleTrigger",
    "n8n-nodes-base.cron",
    "n8n-nodes-base.formTrigger",
    "n8n-nodes-base.emailTrigger",
    "n8n-nodes-base.errorTrigger",
    "n8n-nodes-base.executeWorkflowTrigger",
    "@n8n/n8n-nodes-langchain.chatTrigger",
})

FLOW_NODE_TYPES: frozenset[str] = frozenset({
    "n8n-nodes-base.if",
    "n8n-nodes-base.switch",
    "n8n-nodes-base.merge",
    "n8n-nodes-base.splitInBatches",
    "n8n-nodes-base.wait",
    "n8n-nodes-base.noOp",
    "n8n-nodes-base.respondToWebhook",
})

TRANSFORM_NODE_TYPES: frozenset[str] = frozenset({
    "n8n-nodes-base.code",
    "n8n-nodes-base.function",
    "n8n-nodes-base.functionItem",
    "n8n-nodes-base.set",
    "n8n-nodes-base.itemLists",
    "n8n-nodes-base.aggregate",
    "n8n-nodes-base.filter",
    "n8n-nodes-base.sort",
    "n8n-nodes-base.limit",
    "n8n-nodes-base.removeDuplicates",
    "n8n-nodes-base.splitOut",
    "n8n-nodes-base.summarize",
    "n8n-nodes-base.renameKeys",
})

INTEGRATION_NODE_TYPES: frozenset[str] = frozenset({
    # HTTP / API
    "n8n-nodes-base.httpRequest",
    "n8n-nodes-base.graphql",
    # Databases and spreadsheets
    "n8n-nodes-base.supabase",
    "n8n-nodes-base.postgres",
    "n8n-nodes-base.mysql",
    "n8n-nodes-base.mongodb",
    "n8n-nodes-base.redis",
    "n8n-nodes-base.airtable",
    "n8n-nodes-base.googleSheets",
    # Scraping / web
    "n8n-nodes-firecrawl.firecrawl",
    "@mendable/n8n-nodes-firecrawl.firecrawl",
    "n8n-nodes-base.htmlExtract",
    "n8n-nodes-base.html",
    "n8n-nodes-base.rssFeedRead",
})

AI_NODE_TYPES: frozenset[str] = frozenset({
    "@n8n/n8n-nodes-langchain.agent",
    "@n8n/n8n-nodes-langchain.agentTool",
    "@n8n/n8n-nodes-langchain.chainLlm",
    "@n8n/n8n-nodes-langchain.chainRetrievalQa",
    "@n8n/n8n-nodes-langchain.chainSummarization",
    "@n8n/n8n-nodes-langchain.openAi",
    "@n8n/n8n-nodes-langchain.lmChatOpenAi",
    "@n8n/n8n-nodes-langchain.lmChatAnthropic",
    "@n8n/n8n-nodes-langchain.lmChatOllama",
    "@n8n/n8n-nodes-langchain.lmChatOpenRouter",
    "@n8n/n8n-nodes-langchain.toolCode",
    "@n8n/n8n-nodes-langchain.toolCalculator",
    "@n8n/n8n-nodes-langchain.toolHttpRequest",
    "@n8n/n8n-nodes-langchain.toolThink",
    "@n8n/n8n-nodes-langchain.toolWikipedia",
    "@n8n/n8n-nodes-langchain.toolVectorStore",
    "@n8n/n8n-nodes-langchain.memoryBufferWindow",
    "@n8n/n8n-nodes-langchain.outputParserStructured",
    "n8n-nodes-base.openAi",
    "n8n-nodes-base.perplexityTool",
    "n8n-nodes-base.httpRequestTool",
})

# Structural roles used by the pattern detector.
CONDITIONAL_NODE_TYPES: frozenset[str] = frozenset({
    "n8n-nodes-base.if",
    "n8n-nodes-base.switch",
})
MERGE_NODE_TYPES: frozenset[str] = frozenset({"n8n-nodes-base.merge"})
LOOP_NODE_TYPES: frozenset[str] = frozenset({"n8n-nodes-base.splitInBatches"})

_CATEGORY_TABLE: tuple[tuple[frozenset[str], NodeCategory], ...] = (
    (TRIGGER_NODE_TYPES, NodeCategory.TRIGGER),
    (FLOW_NODE_TYPES, NodeCategory.FLOW),
    (TRANSFORM_NODE_TYPES, NodeCategory.TRANSFORM),
    (INTEGRATION_NODE_TYPES, NodeCategory.INTEGRATION),
    (AI_NODE_TYPES, NodeCategory.AI),
)


def get_node_category(node_type: str) -> NodeCategory:
    """Classify a node type tag; unknown tags are plain actions."""
    for type_set, category in _CATEGORY_TABLE:
        if node_type in type_set:
            return category
    return NodeCategory.ACTION


def is_conditional(node_type: str) -> bool:
    return node_type in CONDITIONAL_NODE_TYPES


def is_merge(node_type: str) -> bool:
    return node_type in MERGE_NODE_TYPES


def is_loop(node_type: str) -> bool:
    return node_type in LOOP_NODE_TYPES


def loop_continue_output(type_version: float) -> int:
    """
    Output port of a splitInBatches node that feeds the loop body.

    Version 3 added a separate "done" output at index 0 and moved the loop
    output to index 1; older versions have a single output.
    """
    return 1 if type_version >= 3 else 0


# ---------------------------------------------------------------------------
# Connection categories
# ---------------------------------------------------------------------------

DATA_CONNECTION = "main"


def is_data_connection(category: str) -> bool:
    """`main` carries items; `ai_*` categories attach sub-nodes to agents."""
    return category == DATA_CONNECTION
