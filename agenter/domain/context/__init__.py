# Memory and recall: how a cognitive state is rebuilt on every interaction
#
# +---------------------+
# |     Fact log        |   (Durable, append-only, JSON lines)
# |---------------------|
# | User messages       |
# | AI thoughts         |
# | Tool results        |
# +---------------------+
#          |
#          v
# +---------------------+
# |  Hybrid retrieval   |   (Similarity index + keyword ranker)
# +---------------------+
#          |
#          v
# +------------------------------+
# |       Recall rounds          |   (activate -> hold -> feel -> metacognition)
# |------------------------------|
# | Working memory (4 slots)     |
# | Emotional tags               |
# | Continuation decision        |
# +------------------------------+
#          |
#          v
#   [Cognitive state: goal, plan, key facts, last result]
