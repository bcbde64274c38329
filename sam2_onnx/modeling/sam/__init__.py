# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Prompt and mask stages of the exported SAM decoder.

The decoder graph embeds prompts and predicts masks itself; these modules map
prompt points into canvas pixels and assemble the decoder's named inputs.
"""
