#State machines for the offer lifecycle and the reassignment queue.
#Each transition is a pure function returning a new instance; stores commit them.
